"""Error taxonomy shared by the remote client and the sync engine.

Each class maps to one handling policy: configuration errors abort a pass
before it starts, transient remote errors are retried on the next pass,
not-found is treated as already satisfied, duplicate content counts as
converged, and local read errors skip a single document.
"""

from __future__ import annotations

from enum import StrEnum


class Severity(StrEnum):
    """How a failed operation affects the outcome of a pass."""

    CRITICAL = "critical"
    NON_CRITICAL = "non_critical"


class KBSyncError(Exception):
    """Base class for all kb-sync errors."""


class ConfigurationError(KBSyncError):
    """Missing or rejected endpoint/credentials. Fatal to any pass."""


class SyncInProgressError(KBSyncError):
    """A pass was triggered while another one is still running."""


class LocalReadError(KBSyncError):
    """A local document vanished or violates the size policy."""

    def __init__(self, identity: str, reason: str) -> None:
        super().__init__(f"Cannot read {identity}: {reason}")
        self.identity = identity
        self.reason = reason


class RemoteError(KBSyncError):
    """An error reported by (or while reaching) the knowledge-base service."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientRemoteError(RemoteError):
    """Network failure, timeout or 5xx. Retried on the next pass."""


class RemoteRequestError(RemoteError):
    """The service rejected the request (4xx other than the cases below)."""


class RemoteNotFoundError(RemoteRequestError):
    """The referenced collection or document does not exist remotely."""


class CollectionExistsError(RemoteRequestError):
    """A collection with the requested name already exists."""


class DuplicateContentError(RemoteRequestError):
    """The service already holds identical content.

    ``remote_id`` carries the id of the existing document when the service
    reports it.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        remote_id: str = "",
    ) -> None:
        super().__init__(message, status_code)
        self.remote_id = remote_id
