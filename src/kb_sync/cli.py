"""CLI entrypoint for kb-sync.

Runs sync passes from a terminal, a cron job or CI without needing the
MCP server running.
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from kb_sync.config import Settings
from kb_sync.errors import KBSyncError
from kb_sync.remote import KnowledgeClient
from kb_sync.runtime import build_scheduler, state_file_path
from kb_sync.sync.scheduler import SyncStatus
from kb_sync.sync.state import SyncStateStore


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _report(status: SyncStatus) -> None:
    if status.skipped_reason:
        click.echo(f"Skipped: {status.skipped_reason}")
        return
    line = (
        f"Sync completed: {status.succeeded_operations}/{status.total_operations} "
        f"operations across {status.documents_total} document(s)"
    )
    if status.documents_skipped:
        line += f", {status.documents_skipped} skipped"
    click.echo(line, err=status.had_error)


@click.group()
@click.option("--debug", is_flag=True, help="Enable detailed logging.")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """kb-sync CLI: sync tagged Markdown notes to knowledge-base collections."""
    cfg = Settings()
    try:
        cfg.check()
    except KBSyncError as exc:
        raise click.ClickException(str(exc)) from exc
    _configure_logging(debug or cfg.debug)
    ctx.obj = cfg


@cli.command()
@click.pass_obj
def sync(cfg: Settings) -> None:
    """Run a single sync pass over the vault."""

    async def _run() -> SyncStatus:
        scheduler, client = build_scheduler(cfg)
        async with client:
            return await scheduler.run_pass(trigger="manual")

    try:
        status = asyncio.run(_run())
    except KBSyncError as exc:
        click.echo(f"Sync failed: {exc}", err=True)
        sys.exit(1)

    _report(status)
    if status.had_error:
        sys.exit(1)


@cli.command()
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Minutes between passes (default: KB_SYNC_INTERVAL_MINUTES).",
)
@click.pass_obj
def watch(cfg: Settings, interval: float | None) -> None:
    """Sync now, then again on a timer until interrupted."""
    minutes = interval if interval is not None else cfg.interval_minutes
    if minutes <= 0:
        click.echo("Error: the sync interval must be positive.", err=True)
        sys.exit(1)

    async def _run() -> None:
        scheduler, client = build_scheduler(cfg)
        async with client:
            try:
                await scheduler.trigger("manual")
                scheduler.start_auto_sync(minutes * 60)
                await asyncio.Event().wait()
            finally:
                await scheduler.shutdown()

    click.echo(f"Watching {cfg.vault_dir} (every {minutes:g} min). Ctrl-C to stop.")
    try:
        asyncio.run(_run())
    except KBSyncError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("Stopped.")


@cli.command()
@click.pass_obj
def status(cfg: Settings) -> None:
    """Show tracked documents and the collections they are attached to."""
    store = SyncStateStore(state_file_path(cfg))
    try:
        state = store.load()
    except KBSyncError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    if not state.records:
        click.echo("No documents tracked yet.")
        return

    click.echo(f"{len(state.records)} document(s) tracked in {store.path}:")
    for identity in sorted(state.records):
        record = state.records[identity]
        collections = ", ".join(record.memberships) or "(none)"
        click.echo(f"  {identity} -> {record.remote_document_id} [{collections}]")


@cli.command(name="test-connection")
@click.pass_obj
def test_connection(cfg: Settings) -> None:
    """Check that the knowledge service is reachable with the configured token."""

    async def _run() -> int:
        async with KnowledgeClient(url=cfg.url, api_token=cfg.api_token) as client:
            return len(await client.list_collections())

    try:
        cfg.validate()
        count = asyncio.run(_run())
    except KBSyncError as exc:
        click.echo(f"Connection failed: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Connection successful: {count} collection(s) visible.")


@cli.command(name="clear-state")
@click.confirmation_option(
    prompt="Forget all tracking data? Remote documents are left in place."
)
@click.pass_obj
def clear_state(cfg: Settings) -> None:
    """Reset all tracking data (remote documents stay where they are)."""
    removed = SyncStateStore(state_file_path(cfg)).clear()
    click.echo(f"Cleared {removed} tracked document(s).")


if __name__ == "__main__":
    cli()
