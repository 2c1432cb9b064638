"""Interfaces the sync engine consumes from its collaborators.

The engine never touches the filesystem, the network or the host
environment directly; it talks to these protocols.  Default
implementations live in :mod:`kb_sync.vault`, :mod:`kb_sync.remote`,
:mod:`kb_sync.converter.links` and :mod:`kb_sync.sync.conditions`.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from kb_sync.config import NetworkClass
    from kb_sync.remote.collections import CollectionInfo


@dataclass(frozen=True)
class LocalDocument:
    """One entry of a document listing."""

    identity: str
    modified_at: float
    size: int = 0


class DocumentSource(Protocol):
    """The local, tag-annotated corpus."""

    async def list_documents(self) -> Sequence[LocalDocument]: ...

    async def read_content(self, identity: str) -> str: ...

    def extract_declared_memberships(self, text: str) -> frozenset[str]: ...


class LinkTransform(Protocol):
    """Pure text rewrite applied before fingerprinting and upload."""

    def __call__(self, text: str, context_name: str) -> str: ...


class RemoteStore(Protocol):
    """The knowledge-base service."""

    async def list_collections(self) -> list[CollectionInfo]: ...

    async def create_collection(self, name: str) -> str: ...

    async def upload_document(self, name: str, content: str) -> str: ...

    async def attach(self, collection_id: str, remote_id: str) -> bool:
        """Return ``False`` when the collection or document no longer exists."""
        ...

    async def detach(self, collection_id: str, remote_id: str) -> None: ...

    async def delete_document(self, remote_id: str) -> None: ...


class DeviceConditions(Protocol):
    """Network and power state, queried fresh at the start of each pass."""

    def network_class(self) -> NetworkClass: ...

    def battery_percent(self) -> float | None: ...

    def is_charging(self) -> bool: ...
