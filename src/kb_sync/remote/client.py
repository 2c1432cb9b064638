"""Composed knowledge-base client.

``KnowledgeClient`` is the single entry point for the knowledge service.
It builds the underlying ``httpx.AsyncClient`` via
``http.build_http_client``, exposes domain-specific sub-clients as
properties, and implements the ``RemoteStore`` protocol the sync engine
consumes: "not found" is never an error for attach, detach or delete.
"""

from __future__ import annotations

import logging

import httpx

from kb_sync.errors import RemoteNotFoundError
from kb_sync.remote.collections import CollectionInfo, CollectionsClient
from kb_sync.remote.files import FilesClient
from kb_sync.remote.http import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT, build_http_client

logger = logging.getLogger(__name__)


class KnowledgeClient:
    """Knowledge-base API client composing the collection and file clients.

    Instantiate with no arguments to use settings from environment
    variables, or pass explicit credentials for testing.

    Usage::

        async with KnowledgeClient() as client:
            collections = await client.list_collections()
            file_id = await client.upload_document("note_1a2b3c4d.md", text)

    Args:
        url: Optional override for ``KB_SYNC_URL``.
        api_token: Optional override for ``KB_SYNC_API_TOKEN``.
        timeout: Per-request timeout in seconds.
        max_retries: Rate-limit retries per request.
        transport: Optional ``httpx`` transport, used by tests.
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        api_token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http: httpx.AsyncClient = build_http_client(
            url=url,
            api_token=api_token,
            timeout=timeout,
            transport=transport,
        )
        self._max_retries = max_retries

        self._collections: CollectionsClient | None = None
        self._files: FilesClient | None = None

    async def __aenter__(self) -> KnowledgeClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Sub-client accessors (lazy-initialized)
    # ------------------------------------------------------------------

    @property
    def collections(self) -> CollectionsClient:
        """Knowledge-collection operations."""
        if self._collections is None:
            self._collections = CollectionsClient(self._http, self._max_retries)
        return self._collections

    @property
    def files(self) -> FilesClient:
        """File upload/delete operations."""
        if self._files is None:
            self._files = FilesClient(self._http, self._max_retries)
        return self._files

    # ------------------------------------------------------------------
    # RemoteStore
    # ------------------------------------------------------------------

    async def list_collections(self) -> list[CollectionInfo]:
        return await self.collections.list_all()

    async def create_collection(self, name: str) -> str:
        created = await self.collections.create(name)
        logger.info("Created collection %s (%s)", name, created.id)
        return created.id

    async def upload_document(self, name: str, content: str) -> str:
        file_id = await self.files.upload(name, content)
        logger.debug("Uploaded %s as %s", name, file_id)
        return file_id

    async def attach(self, collection_id: str, remote_id: str) -> bool:
        """Add a file to a collection.

        Returns ``False`` instead of raising when the service reports the
        collection or file as not found.
        """
        try:
            await self.collections.add_file(collection_id, remote_id)
        except RemoteNotFoundError as exc:
            logger.debug(
                "Attach of %s to %s reported not found: %s", remote_id, collection_id, exc
            )
            return False
        return True

    async def detach(self, collection_id: str, remote_id: str) -> None:
        try:
            await self.collections.remove_file(collection_id, remote_id)
        except RemoteNotFoundError as exc:
            logger.debug(
                "File %s not in collection %s (already removed): %s",
                remote_id, collection_id, exc,
            )

    async def delete_document(self, remote_id: str) -> None:
        try:
            await self.files.delete(remote_id)
        except RemoteNotFoundError as exc:
            logger.debug("File %s already deleted: %s", remote_id, exc)
