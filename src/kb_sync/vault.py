"""Filesystem document source: a directory of tag-annotated Markdown notes."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

from kb_sync.errors import LocalReadError
from kb_sync.sync.ports import LocalDocument

logger = logging.getLogger(__name__)

KB_TAG_PATTERN = re.compile(r"#kb/([A-Za-z0-9_-]+)", re.IGNORECASE)


def tag_to_collection_name(tag: str) -> str:
    """Convert a tag token to its collection display name.

    Example: ``"my-project"`` -> ``"My Project"``,
    ``"company_docs"`` -> ``"Company Docs"``.
    """
    words = re.sub(r"[-_]", " ", tag).lower().split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)


def extract_collection_names(text: str) -> frozenset[str]:
    """Return every collection declared by ``#kb/<name>`` markers in *text*."""
    return frozenset(tag_to_collection_name(m.group(1)) for m in KB_TAG_PATTERN.finditer(text))


class MarkdownVault:
    """``DocumentSource`` over every ``*.md`` file below *root*.

    Identities are POSIX paths relative to *root*.  Hidden directories
    (``.git``, ``.obsidian``, ...) are skipped.  Disk access runs in a
    worker thread so the event loop keeps serving remote calls.

    Args:
        root: Vault directory.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def name(self) -> str:
        return self._root.name

    async def list_documents(self) -> list[LocalDocument]:
        return await asyncio.to_thread(self._scan)

    async def read_content(self, identity: str) -> str:
        path = self._resolve(identity)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError as exc:
            raise LocalReadError(identity, "file no longer exists") from exc
        except UnicodeDecodeError as exc:
            raise LocalReadError(identity, f"not valid UTF-8: {exc}") from exc
        except OSError as exc:
            raise LocalReadError(identity, str(exc)) from exc

    def extract_declared_memberships(self, text: str) -> frozenset[str]:
        return extract_collection_names(text)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _scan(self) -> list[LocalDocument]:
        if not self._root.is_dir():
            raise FileNotFoundError(f"Vault directory not found: {self._root}")

        documents: list[LocalDocument] = []
        for path in sorted(self._root.rglob("*.md")):
            rel = path.relative_to(self._root)
            if any(part.startswith(".") for part in rel.parts):
                continue
            try:
                stat = path.stat()
            except FileNotFoundError:
                # Deleted between listing and stat.
                continue
            if not path.is_file():
                continue
            documents.append(
                LocalDocument(
                    identity=rel.as_posix(),
                    modified_at=stat.st_mtime,
                    size=stat.st_size,
                )
            )
        logger.debug("Found %d Markdown file(s) under %s", len(documents), self._root)
        return documents

    def _resolve(self, identity: str) -> Path:
        path = (self._root / identity).resolve()
        if not path.is_relative_to(self._root):
            raise LocalReadError(identity, "path escapes the vault directory")
        return path
