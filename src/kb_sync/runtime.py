"""Wires the default collaborators into a ready-to-run scheduler."""

from __future__ import annotations

from pathlib import Path

from kb_sync.config import Settings, settings as default_settings
from kb_sync.converter.links import rewrite_wiki_links
from kb_sync.remote import KnowledgeClient
from kb_sync.sync.conditions import SystemConditions
from kb_sync.sync.directory import CollectionDirectory
from kb_sync.sync.engine import ReconciliationEngine
from kb_sync.sync.scheduler import SyncScheduler
from kb_sync.sync.state import SyncStateStore
from kb_sync.vault import MarkdownVault


def state_file_path(cfg: Settings) -> Path:
    """Resolve the state file; relative paths live inside the vault."""
    path = Path(cfg.sync_state_file).expanduser()
    if not path.is_absolute():
        path = Path(cfg.vault_dir).expanduser() / path
    return path


def build_scheduler(
    cfg: Settings | None = None,
    client: KnowledgeClient | None = None,
) -> tuple[SyncScheduler, KnowledgeClient]:
    """Construct a scheduler over the configured vault and service.

    The returned client owns an HTTP connection pool; close it with
    ``await client.aclose()`` when done.
    """
    cfg = cfg or default_settings
    cfg.validate()

    client = client or KnowledgeClient(url=cfg.url, api_token=cfg.api_token)
    vault = MarkdownVault(cfg.vault_dir)
    engine = ReconciliationEngine(
        remote=client,
        directory=CollectionDirectory(client),
        state=SyncStateStore(state_file_path(cfg)),
        source=vault,
        transform=rewrite_wiki_links,
    )
    scheduler = SyncScheduler(
        engine,
        vault,
        SystemConditions(cfg.network_class),
        cfg.to_policy,
        preflight=cfg.validate,
    )
    return scheduler, client
