"""MCP server exposing kb-sync passes and status as tools.

Creates a FastMCP server, initializes the knowledge client and the sync
scheduler, registers all tools, and keeps the auto-sync timer running for
the lifetime of the server.

Run with:
    uv run kb-sync-mcp
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from kb_sync.config import settings
from kb_sync.errors import ConfigurationError
from kb_sync.remote import KnowledgeClient
from kb_sync.runtime import build_scheduler
from kb_sync.sync.scheduler import SyncScheduler
from kb_sync.tools.sync_tools import register_sync_tools

logger = logging.getLogger(__name__)


def create_server(scheduler: SyncScheduler, client: KnowledgeClient) -> FastMCP:
    """Build the FastMCP app around an already-wired scheduler."""

    @asynccontextmanager
    async def lifespan(_server: FastMCP) -> AsyncIterator[None]:
        scheduler.start_auto_sync(settings.interval_minutes * 60)
        try:
            yield
        finally:
            await scheduler.shutdown()
            await client.aclose()
            logger.debug("kb-sync server stopped, resources released")

    mcp = FastMCP(
        "kb-sync",
        instructions=(
            "kb-sync keeps knowledge-base collections in sync with Markdown "
            "notes tagged #kb/<name>. Use these tools to run a sync pass, "
            "inspect what is tracked, and recover a stuck sync lock."
        ),
        lifespan=lifespan,
    )
    register_sync_tools(mcp, scheduler, client)
    return mcp


def main() -> None:
    """Entry point for the MCP server."""
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    try:
        scheduler, client = build_scheduler(settings)
    except ConfigurationError as exc:
        logger.error("Cannot start kb-sync: %s", exc)
        sys.exit(1)
    create_server(scheduler, client).run(transport="stdio")


if __name__ == "__main__":
    main()
