"""Reconciliation engine: converge remote collections on local declarations.

For one document at a time, compares what the document declares now
(content fingerprint and collection names) with what the state store says
was last confirmed remotely, and issues the smallest set of remote calls
that makes the two agree.  Local state is always authoritative.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, Field

from kb_sync.errors import (
    DuplicateContentError,
    KBSyncError,
    LocalReadError,
    RemoteError,
    Severity,
)
from kb_sync.sync.directory import CollectionDirectory
from kb_sync.sync.fingerprint import fingerprint, stable_name
from kb_sync.sync.ports import DocumentSource, LinkTransform, LocalDocument, RemoteStore
from kb_sync.sync.state import SyncRecord, SyncStateStore

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Result models
# ------------------------------------------------------------------


class DocumentAction(StrEnum):
    """What a reconciliation did to one document."""

    UNCHANGED = "unchanged"
    UPLOADED = "uploaded"
    REUPLOADED = "reuploaded"
    MEMBERSHIP = "membership"
    REMOVED = "removed"
    UNTRACKED = "untracked"
    CONVERGED = "converged"
    FAILED = "failed"


class DocumentResult(BaseModel):
    """Outcome of reconciling a single document."""

    identity: str
    action: DocumentAction
    attempted: int = 0
    succeeded: int = 0
    remote_document_id: str = ""
    memberships: list[str] = Field(default_factory=list)
    error: str = ""

    @property
    def failed(self) -> bool:
        return self.action == DocumentAction.FAILED or self.succeeded < self.attempted


@dataclass
class CleanupResult:
    """Outcome of a best-effort call whose failure never fails a pass."""

    operation: str
    ok: bool
    severity: Severity = Severity.NON_CRITICAL
    error: str = ""

    @property
    def log_level(self) -> int:
        return logging.ERROR if self.severity == Severity.CRITICAL else logging.WARNING


@dataclass
class _Counter:
    attempted: int = 0
    succeeded: int = 0
    failures: list[str] = field(default_factory=list)


# ------------------------------------------------------------------
# Engine
# ------------------------------------------------------------------


class ReconciliationEngine:
    """Computes and executes the remote operations for one document.

    Args:
        remote: The knowledge-base service.
        directory: Shared collection name -> id cache.
        state: Durable per-document sync state.
        source: The local document corpus.
        transform: Link rewrite applied before hashing and upload.
    """

    def __init__(
        self,
        remote: RemoteStore,
        directory: CollectionDirectory,
        state: SyncStateStore,
        source: DocumentSource,
        transform: LinkTransform,
    ) -> None:
        self._remote = remote
        self._directory = directory
        self._state = state
        self._source = source
        self._transform = transform

    @property
    def state(self) -> SyncStateStore:
        return self._state

    @property
    def directory(self) -> CollectionDirectory:
        return self._directory

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def reconcile(
        self,
        document: LocalDocument,
        *,
        context_name: str = "",
        max_bytes: int | None = None,
    ) -> DocumentResult:
        """Converge the remote side of *document* on its local declarations.

        Raises:
            LocalReadError: If the document vanished or is too large.
            RemoteError: If the upload fails. The stored record claims no
                remote copy afterwards, so the next pass uploads again.

        A duplicate-content upload whose existing id the service does not
        report is returned as ``CONVERGED`` without recording a remote copy.
        """
        identity = document.identity
        previous = self._state.get(identity)
        snapshot = self._state.get_declared(identity)

        if (
            previous is not None
            and snapshot is not None
            and previous.remote_document_id
            and previous.source_modified_at == document.modified_at
        ):
            # Untouched since the last pass: the content is what was uploaded.
            return await self._converge_unread(document, snapshot, previous)

        if max_bytes is not None and document.size > max_bytes:
            raise LocalReadError(
                identity, f"{document.size} bytes exceeds the {max_bytes}-byte limit"
            )
        raw = await self._source.read_content(identity)
        if max_bytes is not None and len(raw.encode("utf-8")) > max_bytes:
            raise LocalReadError(identity, f"content exceeds the {max_bytes}-byte limit")
        declared = self._source.extract_declared_memberships(raw)
        content = self._transform(raw, context_name)
        content_hash = fingerprint(content)

        if not declared:
            if previous is not None:
                return await self.remove(identity)
            if snapshot is not None:
                await self._state.delete_async(identity)
            return DocumentResult(identity=identity, action=DocumentAction.UNTRACKED)

        if (
            previous is None
            or not previous.remote_document_id
            or content_hash != previous.content_fingerprint
        ):
            logger.debug("%s: content changed, declared=%s", identity, sorted(declared))
            return await self._upload_and_attach(
                document, declared, content, content_hash, previous
            )

        if declared != previous.membership_set:
            logger.debug("%s: memberships changed, declared=%s", identity, sorted(declared))
            return await self._apply_membership_delta(document, declared, previous)

        if previous.source_modified_at != document.modified_at or snapshot != declared:
            previous.source_modified_at = document.modified_at
            await self._state.commit_async(identity, previous, declared)
        return self._unchanged(identity, previous)

    async def remove(self, identity: str) -> DocumentResult:
        """Detach *identity* from every collection, delete it remotely and
        forget it locally.

        Each detach is attempted independently; the remote delete is best
        effort.  The record is dropped whatever the partial outcome.
        """
        previous = self._state.get(identity)
        if previous is None:
            await self._state.delete_async(identity)
            return DocumentResult(identity=identity, action=DocumentAction.UNTRACKED)

        counter = _Counter()
        await self._retire(identity, previous, counter)
        await self._state.delete_async(identity)
        logger.info(
            "Removed %s (%s) from %d/%d collection(s)",
            identity, previous.remote_document_id,
            counter.succeeded, counter.attempted,
        )
        return DocumentResult(
            identity=identity,
            action=DocumentAction.REMOVED,
            attempted=counter.attempted,
            succeeded=counter.succeeded,
            remote_document_id=previous.remote_document_id,
            error="; ".join(counter.failures),
        )

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    async def _converge_unread(
        self,
        document: LocalDocument,
        declared: frozenset[str],
        previous: SyncRecord,
    ) -> DocumentResult:
        if not declared:
            return await self.remove(document.identity)
        if declared != previous.membership_set:
            return await self._apply_membership_delta(document, declared, previous)
        return self._unchanged(document.identity, previous)

    @staticmethod
    def _unchanged(identity: str, record: SyncRecord) -> DocumentResult:
        return DocumentResult(
            identity=identity,
            action=DocumentAction.UNCHANGED,
            remote_document_id=record.remote_document_id,
            memberships=sorted(record.memberships),
        )

    async def _upload_and_attach(
        self,
        document: LocalDocument,
        declared: frozenset[str],
        content: str,
        content_hash: str,
        previous: SyncRecord | None,
    ) -> DocumentResult:
        identity = document.identity
        counter = _Counter()
        replacing = previous is not None

        if previous is not None and previous.remote_document_id:
            # The old upload is being retired; every membership moves to the new id.
            await self._retire(identity, previous, counter)
            # Until the new upload lands, the record claims no remote copy.
            await self._state.commit_async(
                identity,
                SyncRecord(
                    source_modified_at=previous.source_modified_at,
                    last_synced_at=previous.last_synced_at,
                ),
                declared,
            )

        upload_name = stable_name(identity, content_hash)
        counter.attempted += 1
        try:
            remote_id = await self._remote.upload_document(upload_name, content)
        except DuplicateContentError as exc:
            if not exc.remote_id:
                logger.info(
                    "%s: service already holds this content without naming it, "
                    "nothing to attach",
                    identity,
                )
                counter.succeeded += 1
                return DocumentResult(
                    identity=identity,
                    action=DocumentAction.CONVERGED,
                    attempted=counter.attempted,
                    succeeded=counter.succeeded,
                    error="; ".join(counter.failures),
                )
            logger.info(
                "%s: content already on the service as %s, reusing it",
                identity, exc.remote_id,
            )
            remote_id = exc.remote_id
        except RemoteError:
            logger.error("%s: upload of %s failed", identity, upload_name)
            raise
        counter.succeeded += 1

        confirmed = await self._attach_all(identity, remote_id, declared, counter)
        record = SyncRecord(
            remote_document_id=remote_id,
            uploaded_name=upload_name,
            content_fingerprint=content_hash,
            source_modified_at=document.modified_at,
            memberships=sorted(confirmed),
            last_synced_at=datetime.now(timezone.utc),
        )
        await self._state.commit_async(identity, record, declared)

        logger.info(
            "Synced %s -> %s in %s",
            identity, remote_id, ", ".join(sorted(confirmed)) or "no collections",
        )
        return DocumentResult(
            identity=identity,
            action=DocumentAction.REUPLOADED if replacing else DocumentAction.UPLOADED,
            attempted=counter.attempted,
            succeeded=counter.succeeded,
            remote_document_id=remote_id,
            memberships=sorted(confirmed),
            error="; ".join(counter.failures),
        )

    async def _apply_membership_delta(
        self,
        document: LocalDocument,
        declared: frozenset[str],
        previous: SyncRecord,
    ) -> DocumentResult:
        identity = document.identity
        remote_id = previous.remote_document_id
        counter = _Counter()
        current = set(previous.memberships)

        for name in sorted(previous.membership_set - declared):
            if await self._detach(identity, name, remote_id, counter):
                current.discard(name)

        current |= await self._attach_all(
            identity, remote_id, declared - previous.membership_set, counter
        )

        previous.memberships = sorted(current)
        previous.source_modified_at = document.modified_at
        previous.last_synced_at = datetime.now(timezone.utc)
        await self._state.commit_async(identity, previous, declared)

        return DocumentResult(
            identity=identity,
            action=DocumentAction.MEMBERSHIP,
            attempted=counter.attempted,
            succeeded=counter.succeeded,
            remote_document_id=remote_id,
            memberships=sorted(current),
            error="; ".join(counter.failures),
        )

    # ------------------------------------------------------------------
    # Remote steps
    # ------------------------------------------------------------------

    async def _retire(self, identity: str, record: SyncRecord, counter: _Counter) -> None:
        """Detach an old upload from all its collections, then delete it."""
        for name in sorted(record.membership_set):
            await self._detach(identity, name, record.remote_document_id, counter)
        if record.remote_document_id:
            cleanup = await self._best_effort(
                f"delete {record.remote_document_id}",
                self._remote.delete_document(record.remote_document_id),
            )
            if not cleanup.ok:
                logger.log(
                    cleanup.log_level,
                    "%s: could not delete old upload %s: %s",
                    identity, record.remote_document_id, cleanup.error,
                )

    async def _detach(
        self, identity: str, name: str, remote_id: str, counter: _Counter
    ) -> bool:
        counter.attempted += 1
        try:
            collection_id = await self._directory.resolve(name)
            if collection_id is None:
                logger.debug("%s: collection %s no longer exists, nothing to detach", identity, name)
            else:
                await self._remote.detach(collection_id, remote_id)
        except KBSyncError as exc:
            logger.warning("%s: failed to detach from %s: %s", identity, name, exc)
            counter.failures.append(f"detach {name}: {exc}")
            return False
        counter.succeeded += 1
        return True

    async def _attach_all(
        self,
        identity: str,
        remote_id: str,
        names: frozenset[str] | set[str],
        counter: _Counter,
    ) -> set[str]:
        confirmed: set[str] = set()
        for name in sorted(names):
            counter.attempted += 1
            try:
                collection_id = await self._directory.get_or_create(name)
                if not await self._remote.attach(collection_id, remote_id):
                    # Gone remotely: leave it unconfirmed so the next pass
                    # re-resolves (and recreates) the collection.
                    logger.info(
                        "%s: collection %s no longer exists remotely, will retry",
                        identity, name,
                    )
                    self._directory.invalidate(name)
                    counter.succeeded += 1
                    continue
            except DuplicateContentError:
                logger.debug("%s: already present in %s", identity, name)
            except KBSyncError as exc:
                logger.warning("%s: failed to attach to %s: %s", identity, name, exc)
                counter.failures.append(f"attach {name}: {exc}")
                continue
            confirmed.add(name)
            counter.succeeded += 1
        return confirmed

    @staticmethod
    async def _best_effort(operation: str, call: Awaitable[None]) -> CleanupResult:
        try:
            await call
        except KBSyncError as exc:
            return CleanupResult(operation=operation, ok=False, error=str(exc))
        return CleanupResult(operation=operation, ok=True)
