"""MCP tools for running sync passes and inspecting sync state."""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from kb_sync.config import settings
from kb_sync.errors import KBSyncError, SyncInProgressError
from kb_sync.remote import KnowledgeClient
from kb_sync.sync.scheduler import SyncScheduler
from kb_sync.tools.schemas import (
    PassResultResponse,
    SyncStatusResponse,
    TrackedDocumentResponse,
)


def register_sync_tools(
    mcp: FastMCP,
    scheduler: SyncScheduler,
    client: KnowledgeClient,
) -> None:
    """Register sync, status and lock-recovery tools with the MCP server."""

    @mcp.tool()
    async def sync_now() -> dict[str, Any]:
        """Run a sync pass over the vault right now.

        Rejected (not queued) if a pass is already running, whether it was
        started by the timer or by a previous call.
        """
        try:
            status = await scheduler.run_pass(trigger="manual")
        except SyncInProgressError as exc:
            return PassResultResponse(success=False, message=str(exc)).model_dump()
        except KBSyncError as exc:
            return PassResultResponse(
                success=False, message=f"Sync failed: {exc}"
            ).model_dump()

        if status.skipped_reason:
            message = f"Skipped: {status.skipped_reason}"
        else:
            message = (
                f"Sync completed: {status.succeeded_operations}/"
                f"{status.total_operations} operations"
            )
        return PassResultResponse(
            success=not status.had_error,
            message=message,
            status=SyncStatusResponse.from_status(status, settings.is_configured),
        ).model_dump()

    @mcp.tool()
    def get_sync_status() -> dict[str, Any]:
        """Report progress of the running pass, or the outcome of the last one."""
        return SyncStatusResponse.from_status(
            scheduler.status, settings.is_configured
        ).model_dump()

    @mcp.tool()
    def list_tracked_documents() -> list[dict[str, Any]]:
        """List every synced note with its remote file id and collections."""
        state = scheduler.engine.state.load()
        return [
            TrackedDocumentResponse(
                identity=identity,
                remote_document_id=record.remote_document_id,
                uploaded_name=record.uploaded_name,
                collections=record.memberships,
                last_synced=(
                    record.last_synced_at.isoformat() if record.last_synced_at else None
                ),
            ).model_dump()
            for identity, record in sorted(state.records.items())
        ]

    @mcp.tool()
    def force_release_sync_lock() -> dict[str, Any]:
        """Emergency unlock when a sync pass is stuck.

        Only use this when a pass has clearly died; releasing the lock
        under a live pass lets a second pass run concurrently.
        """
        released = scheduler.force_release()
        return {
            "released": released,
            "message": "Sync lock released." if released else "Sync lock was not held.",
        }

    @mcp.tool()
    async def test_connection() -> dict[str, Any]:
        """Check that the knowledge service is reachable with the configured token."""
        try:
            collections = await client.list_collections()
        except KBSyncError as exc:
            return {"success": False, "message": f"Connection failed: {exc}"}
        return {
            "success": True,
            "message": f"Connection successful: {len(collections)} collection(s) visible.",
        }
