"""File upload and deletion against ``/api/v1/files``."""

from __future__ import annotations

import httpx

from kb_sync.errors import RemoteRequestError
from kb_sync.remote.http import DEFAULT_MAX_RETRIES, json_body, send


class FilesClient:
    """Client for file operations.

    Args:
        client: A configured ``httpx.AsyncClient``.
        max_retries: Rate-limit retries per request.
    """

    def __init__(
        self, client: httpx.AsyncClient, max_retries: int = DEFAULT_MAX_RETRIES
    ) -> None:
        self._client = client
        self._max_retries = max_retries

    async def upload(
        self, filename: str, content: str, content_type: str = "text/markdown"
    ) -> str:
        """Upload *content* as a multipart file and return the new file id.

        Raises:
            DuplicateContentError: If the server already holds this content.
        """
        operation = f"upload {filename}"
        response = await send(
            self._client, "POST", "/api/v1/files/",
            operation=operation, max_retries=self._max_retries,
            files={"file": (filename, content.encode("utf-8"), content_type)},
        )
        data = json_body(response, operation)
        if not isinstance(data, dict) or not data.get("id"):
            raise RemoteRequestError(f"No file id returned for '{operation}'")
        return str(data["id"])

    async def delete(self, file_id: str) -> None:
        await send(
            self._client, "DELETE", f"/api/v1/files/{file_id}",
            operation=f"delete file {file_id}", max_retries=self._max_retries,
        )
