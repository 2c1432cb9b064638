"""Knowledge-collection operations.

Wraps ``/api/v1/knowledge`` endpoints: list collections, create a
collection, and add/remove a file to/from a collection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from kb_sync.errors import RemoteRequestError
from kb_sync.remote.http import DEFAULT_MAX_RETRIES, json_body, send


@dataclass(frozen=True)
class CollectionInfo:
    """Lightweight container for a knowledge collection."""

    id: str
    name: str
    description: str = ""


class CollectionsClient:
    """Client for knowledge-collection operations.

    Args:
        client: A configured ``httpx.AsyncClient``.
        max_retries: Rate-limit retries per request.
    """

    def __init__(
        self, client: httpx.AsyncClient, max_retries: int = DEFAULT_MAX_RETRIES
    ) -> None:
        self._client = client
        self._max_retries = max_retries

    # ------------------------------------------------------------------
    # List / create
    # ------------------------------------------------------------------

    async def list_all(self) -> list[CollectionInfo]:
        """Return every collection visible to the token.

        Older servers answer with a bare JSON list, newer ones wrap it as
        ``{"items": [...]}``; both are accepted.
        """
        operation = "list collections"
        response = await send(
            self._client, "GET", "/api/v1/knowledge/",
            operation=operation, max_retries=self._max_retries,
        )
        data: Any = json_body(response, operation)
        if isinstance(data, dict):
            data = data.get("items") or data.get("data") or []
        if not isinstance(data, list):
            raise RemoteRequestError(
                f"Unexpected payload for '{operation}': {type(data).__name__}"
            )

        collections: list[CollectionInfo] = []
        for item in data:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            collections.append(
                CollectionInfo(
                    id=str(item["id"]),
                    name=str(item.get("name", "")),
                    description=str(item.get("description") or ""),
                )
            )
        return collections

    async def create(self, name: str, description: str | None = None) -> CollectionInfo:
        """Create a collection and return it.

        Raises:
            CollectionExistsError: If the server refuses a duplicate name.
        """
        operation = f"create collection {name}"
        response = await send(
            self._client, "POST", "/api/v1/knowledge/create",
            operation=operation, max_retries=self._max_retries,
            json={
                "name": name,
                "description": description or f"Auto-created by kb-sync for {name}",
                "data": {},
                "access_control": {},
            },
        )
        data = json_body(response, operation)
        if not isinstance(data, dict) or not data.get("id"):
            raise RemoteRequestError(f"No collection id returned for '{operation}'")
        return CollectionInfo(
            id=str(data["id"]),
            name=str(data.get("name", name)),
            description=str(data.get("description") or ""),
        )

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def add_file(self, collection_id: str, file_id: str) -> None:
        await send(
            self._client, "POST", f"/api/v1/knowledge/{collection_id}/file/add",
            operation=f"add file {file_id} to collection {collection_id}",
            max_retries=self._max_retries,
            json={"file_id": file_id},
        )

    async def remove_file(self, collection_id: str, file_id: str) -> None:
        await send(
            self._client, "POST", f"/api/v1/knowledge/{collection_id}/file/remove",
            operation=f"remove file {file_id} from collection {collection_id}",
            max_retries=self._max_retries,
            json={"file_id": file_id},
        )
