"""Sync state persistence using JSON-backed Pydantic models.

Tracks, per local document, which remote document currently represents
it, the fingerprint of the content that was uploaded, and the collections
it was confirmed attached to, so the reconciliation engine can compute
the minimal set of remote operations on the next pass.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from kb_sync.errors import KBSyncError

logger = logging.getLogger(__name__)


class SyncRecord(BaseModel):
    """What the remote side looks like for one local document."""

    remote_document_id: str = ""
    uploaded_name: str = ""
    content_fingerprint: str = ""
    source_modified_at: float = 0.0
    memberships: list[str] = Field(default_factory=list)
    last_synced_at: datetime | None = None

    @property
    def membership_set(self) -> frozenset[str]:
        return frozenset(self.memberships)


class SyncState(BaseModel):
    """Root model for the persisted sync state file."""

    version: int = 1
    records: dict[str, SyncRecord] = Field(default_factory=dict)
    declared: dict[str, list[str]] = Field(default_factory=dict)


class SyncStateStore:
    """Manages reading, writing, and querying the JSON sync state file.

    Every mutation rewrites the file through a temporary file and an
    atomic rename, so a process killed mid-pass leaves either the old or
    the new state on disk, never a torn file.  Records for different
    documents are independent: an interrupted pass only loses the
    document that was in flight.

    The ``declared`` map is a snapshot of the collection names each
    document declared when it was last read.  It lets unchanged documents
    skip reading altogether and is never treated as authoritative.

    Args:
        state_file: Path to the JSON state file.
    """

    def __init__(self, state_file: str | Path) -> None:
        self._state_file = Path(state_file)
        self._state: SyncState | None = None
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._state_file

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> SyncState:
        """Load sync state from disk, returning an empty state if the file
        does not exist or is empty.

        Raises:
            KBSyncError: If the file exists but cannot be parsed.
        """
        if self._state_file.exists() and self._state_file.stat().st_size > 0:
            raw = self._state_file.read_text(encoding="utf-8")
            try:
                self._state = SyncState.model_validate_json(raw)
            except ValidationError as exc:
                raise KBSyncError(
                    f"Sync state file {self._state_file} is corrupt; "
                    f"run `kb-sync clear-state` to reset it: {exc}"
                ) from exc
        else:
            self._state = SyncState()
        return self._state

    def save(self, state: SyncState) -> None:
        """Persist the given sync state to disk as pretty-printed JSON.

        Parent directories are created automatically if they do not exist.
        """
        self._state = state
        self._write(self._serialize(state))

    async def save_async(self) -> None:
        """Persist the in-memory state without blocking the event loop.

        The snapshot is taken on the loop under a lock and written from a
        worker thread, so concurrent callers land on disk in call order.
        """
        async with self._write_lock:
            data = self._serialize(self._ensure_loaded())
            await asyncio.to_thread(self._write, data)

    @staticmethod
    def _serialize(state: SyncState) -> str:
        return state.model_dump_json(indent=2) + "\n"

    def _write(self, data: str) -> None:
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self._state_file.parent, prefix=f".{self._state_file.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self._state_file)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _ensure_loaded(self) -> SyncState:
        """Return the in-memory state, loading from disk if necessary."""
        if self._state is None:
            return self.load()
        return self._state

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def get(self, identity: str) -> SyncRecord | None:
        """Return a copy of the record for *identity*, or ``None``."""
        record = self._ensure_loaded().records.get(identity)
        return record.model_copy(deep=True) if record is not None else None

    def put(self, identity: str, record: SyncRecord) -> None:
        """Store *record* for *identity* and persist."""
        state = self._ensure_loaded()
        state.records[identity] = record.model_copy(deep=True)
        self.save(state)

    def delete(self, identity: str) -> None:
        """Forget *identity* entirely (record and declared snapshot).

        This is a no-op if nothing is stored for it.
        """
        if self._forget(identity):
            self.save(self._ensure_loaded())

    async def delete_async(self, identity: str) -> None:
        """Like ``delete``, writing the file off the event loop."""
        if self._forget(identity):
            await self.save_async()

    def _forget(self, identity: str) -> bool:
        state = self._ensure_loaded()
        removed = state.records.pop(identity, None)
        removed_declared = state.declared.pop(identity, None)
        return removed is not None or removed_declared is not None

    def all_ids(self) -> set[str]:
        return set(self._ensure_loaded().records)

    # ------------------------------------------------------------------
    # Declared-membership snapshots
    # ------------------------------------------------------------------

    def get_declared(self, identity: str) -> frozenset[str] | None:
        names = self._ensure_loaded().declared.get(identity)
        return frozenset(names) if names is not None else None

    def put_declared(self, identity: str, names: frozenset[str] | set[str]) -> None:
        state = self._ensure_loaded()
        state.declared[identity] = sorted(names)
        self.save(state)

    def commit(
        self,
        identity: str,
        record: SyncRecord,
        declared: frozenset[str] | set[str],
    ) -> None:
        """Store a record and its declared snapshot in a single write."""
        self.save(self._stage(identity, record, declared))

    async def commit_async(
        self,
        identity: str,
        record: SyncRecord,
        declared: frozenset[str] | set[str],
    ) -> None:
        """Like ``commit``, writing the file off the event loop."""
        self._stage(identity, record, declared)
        await self.save_async()

    def _stage(
        self,
        identity: str,
        record: SyncRecord,
        declared: frozenset[str] | set[str],
    ) -> SyncState:
        state = self._ensure_loaded()
        state.records[identity] = record.model_copy(deep=True)
        state.declared[identity] = sorted(declared)
        return state

    def clear(self) -> int:
        """Drop all tracking data. Returns how many records were removed."""
        try:
            count = len(self._ensure_loaded().records)
        except KBSyncError as exc:
            logger.warning("Discarding unreadable sync state: %s", exc)
            count = 0
        self.save(SyncState())
        logger.info("Cleared sync state (%d record(s)) at %s", count, self._state_file)
        return count
