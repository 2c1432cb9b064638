"""Reconciliation of local collection declarations with the knowledge base."""

from kb_sync.sync.conditions import StaticConditions, SystemConditions
from kb_sync.sync.directory import CollectionCacheEntry, CollectionDirectory
from kb_sync.sync.engine import (
    CleanupResult,
    DocumentAction,
    DocumentResult,
    ReconciliationEngine,
)
from kb_sync.sync.fingerprint import fingerprint, sanitize, stable_name
from kb_sync.sync.ports import (
    DeviceConditions,
    DocumentSource,
    LinkTransform,
    LocalDocument,
    RemoteStore,
)
from kb_sync.sync.scheduler import SingleFlight, SyncScheduler, SyncStatus
from kb_sync.sync.state import SyncRecord, SyncState, SyncStateStore

__all__ = [
    "CleanupResult",
    "CollectionCacheEntry",
    "CollectionDirectory",
    "DeviceConditions",
    "DocumentAction",
    "DocumentResult",
    "DocumentSource",
    "LinkTransform",
    "LocalDocument",
    "ReconciliationEngine",
    "RemoteStore",
    "SingleFlight",
    "StaticConditions",
    "SyncRecord",
    "SyncScheduler",
    "SyncState",
    "SyncStateStore",
    "SyncStatus",
    "SystemConditions",
    "fingerprint",
    "sanitize",
    "stable_name",
]
