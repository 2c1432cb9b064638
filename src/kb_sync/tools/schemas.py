"""Pydantic models for MCP tool outputs."""

from __future__ import annotations

from pydantic import BaseModel

from kb_sync.sync.scheduler import SyncStatus


class SyncStatusResponse(BaseModel):
    """Live or last-pass sync status."""

    label: str
    is_syncing: bool
    succeeded_operations: int
    total_operations: int
    had_error: bool
    documents_total: int = 0
    documents_done: int = 0
    skipped_reason: str = ""
    last_finished_at: str | None = None

    @classmethod
    def from_status(cls, status: SyncStatus, configured: bool = True) -> SyncStatusResponse:
        return cls(
            label=status.label(configured),
            is_syncing=status.is_syncing,
            succeeded_operations=status.succeeded_operations,
            total_operations=status.total_operations,
            had_error=status.had_error,
            documents_total=status.documents_total,
            documents_done=status.documents_done,
            skipped_reason=status.skipped_reason,
            last_finished_at=(
                status.last_finished_at.isoformat() if status.last_finished_at else None
            ),
        )


class PassResultResponse(BaseModel):
    """Response from a sync_now call."""

    success: bool
    message: str
    status: SyncStatusResponse | None = None


class TrackedDocumentResponse(BaseModel):
    """Single entry in the tracked-documents listing."""

    identity: str
    remote_document_id: str
    uploaded_name: str = ""
    collections: list[str]
    last_synced: str | None = None
