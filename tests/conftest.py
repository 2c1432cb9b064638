"""Shared fakes for the sync tests.

``FakeRemote`` is an in-memory knowledge service that records every call.
``FakeSource`` keeps documents in a dict; each document's collections are
declared on a ``tags:`` line, and ``strip_tags`` (used as the link
transform) drops that line before hashing so tag edits do not count as
content edits.
"""

from __future__ import annotations

import itertools
from pathlib import Path

import pytest

from kb_sync.errors import (
    CollectionExistsError,
    LocalReadError,
)
from kb_sync.remote.collections import CollectionInfo
from kb_sync.sync.directory import CollectionDirectory
from kb_sync.sync.engine import ReconciliationEngine
from kb_sync.sync.ports import LocalDocument
from kb_sync.sync.state import SyncStateStore


class FakeRemote:
    """In-memory RemoteStore with call recording and failure injection.

    ``fail`` maps an operation name (``"upload"``, ``"attach"``, ...) to an
    exception; when an argument filter is given as ``(exc, arg)`` the
    failure only applies to calls whose first argument equals ``arg``.
    """

    def __init__(self) -> None:
        self.collections: dict[str, str] = {}  # id -> name
        self.files: dict[str, tuple[str, str]] = {}  # id -> (name, content)
        self.members: dict[str, set[str]] = {}  # collection id -> file ids
        self.calls: list[tuple] = []
        self.fail: dict[str, BaseException | tuple[BaseException, str]] = {}
        self._ids = itertools.count(1)

    # helpers ------------------------------------------------------------

    def add_collection(self, name: str) -> str:
        collection_id = f"col-{next(self._ids)}"
        self.collections[collection_id] = name
        self.members[collection_id] = set()
        return collection_id

    def collection_id(self, name: str) -> str:
        for collection_id, existing in self.collections.items():
            if existing == name:
                return collection_id
        raise KeyError(name)

    def members_of(self, name: str) -> set[str]:
        return self.members[self.collection_id(name)]

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    def _maybe_fail(self, operation: str, arg: str) -> None:
        spec = self.fail.get(operation)
        if spec is None:
            return
        if isinstance(spec, tuple):
            exc, only = spec
            if arg != only:
                return
            raise exc
        raise spec

    # RemoteStore --------------------------------------------------------

    async def list_collections(self) -> list[CollectionInfo]:
        self.calls.append(("list",))
        self._maybe_fail("list", "")
        return [CollectionInfo(id=cid, name=name) for cid, name in self.collections.items()]

    async def create_collection(self, name: str) -> str:
        self.calls.append(("create", name))
        self._maybe_fail("create", name)
        if name in self.collections.values():
            raise CollectionExistsError(f"{name} already exists", 400)
        return self.add_collection(name)

    async def upload_document(self, name: str, content: str) -> str:
        self.calls.append(("upload", name))
        self._maybe_fail("upload", name)
        file_id = f"file-{next(self._ids)}"
        self.files[file_id] = (name, content)
        return file_id

    async def attach(self, collection_id: str, remote_id: str) -> bool:
        self.calls.append(("attach", collection_id, remote_id))
        self._maybe_fail("attach", collection_id)
        if collection_id not in self.collections:
            return False
        self.members[collection_id].add(remote_id)
        return True

    async def detach(self, collection_id: str, remote_id: str) -> None:
        self.calls.append(("detach", collection_id, remote_id))
        self._maybe_fail("detach", collection_id)
        self.members.get(collection_id, set()).discard(remote_id)

    async def delete_document(self, remote_id: str) -> None:
        self.calls.append(("delete", remote_id))
        self._maybe_fail("delete", remote_id)
        self.files.pop(remote_id, None)


class FakeSource:
    """DocumentSource over an in-memory dict of documents."""

    def __init__(self) -> None:
        self.docs: dict[str, tuple[str, float]] = {}
        self.reads: list[str] = []
        self.list_error: BaseException | None = None

    def write(self, identity: str, body: str, tags: list[str], mtime: float) -> None:
        text = body
        if tags:
            text = f"tags: {', '.join(tags)}\n{body}"
        self.docs[identity] = (text, mtime)

    def remove(self, identity: str) -> None:
        del self.docs[identity]

    def document(self, identity: str) -> LocalDocument:
        text, mtime = self.docs[identity]
        return LocalDocument(identity, mtime, len(text.encode("utf-8")))

    async def list_documents(self) -> list[LocalDocument]:
        if self.list_error is not None:
            raise self.list_error
        return [self.document(identity) for identity in sorted(self.docs)]

    async def read_content(self, identity: str) -> str:
        self.reads.append(identity)
        if identity not in self.docs:
            raise LocalReadError(identity, "file no longer exists")
        return self.docs[identity][0]

    def extract_declared_memberships(self, text: str) -> frozenset[str]:
        first, _, _ = text.partition("\n")
        if not first.startswith("tags:"):
            return frozenset()
        return frozenset(t.strip() for t in first[len("tags:"):].split(",") if t.strip())


def strip_tags(text: str, context_name: str) -> str:
    if text.startswith("tags:"):
        return text.partition("\n")[2]
    return text


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Injectable sleep that returns at once and remembers the delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "sync.json"


@pytest.fixture
def store(state_path: Path) -> SyncStateStore:
    return SyncStateStore(state_path)


@pytest.fixture
def directory(remote: FakeRemote, clock: FakeClock) -> CollectionDirectory:
    return CollectionDirectory(remote, ttl=300, clock=clock)


@pytest.fixture
def engine(
    remote: FakeRemote,
    directory: CollectionDirectory,
    store: SyncStateStore,
    source: FakeSource,
) -> ReconciliationEngine:
    return ReconciliationEngine(remote, directory, store, source, strip_tags)


