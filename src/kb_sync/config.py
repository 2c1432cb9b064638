from __future__ import annotations

import os
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kb_sync.errors import ConfigurationError


class NetworkClass(StrEnum):
    """Coarse classification of the current network link."""

    UNCONSTRAINED = "unconstrained"
    CONSTRAINED = "constrained"


class NetworkPolicy(StrEnum):
    """Whether passes may run on a constrained network at all."""

    ALWAYS = "always"
    NEVER_CONSTRAINED = "never_constrained"


class SyncPolicy(BaseModel):
    """Immutable batching and gating policy, captured once per pass."""

    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=10, ge=1)
    constrained_batch_size: int = Field(default=3, ge=1)
    max_concurrency: int = Field(default=4, ge=1)
    max_document_bytes: int = Field(default=5 * 1024 * 1024, ge=1)
    constrained_max_document_bytes: int = Field(default=1024 * 1024, ge=1)
    constrained_pause_seconds: float = Field(default=1.0, ge=0)
    network_policy: NetworkPolicy = NetworkPolicy.ALWAYS
    min_battery_percent: float = Field(default=0, ge=0, le=100)
    context_name: str = ""


def _int_env(name: str, default: int, problems: list[str]) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        problems.append(f"{name} must be an integer, got {raw!r}")
        return default


def _float_env(name: str, default: float, problems: list[str]) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        problems.append(f"{name} must be a number, got {raw!r}")
        return default


class Settings:
    """Application settings loaded from environment variables.

    Unparseable numbers fall back to their defaults and are collected in
    ``problems``. ``check()`` reports them, so building the module-level
    ``settings`` never raises.
    """

    def __init__(self) -> None:
        self.problems: list[str] = []
        self.url: str = os.environ.get("KB_SYNC_URL", "http://localhost:3000")
        self.api_token: str = os.environ.get("KB_SYNC_API_TOKEN", "")
        self.vault_dir: str = os.environ.get("KB_SYNC_VAULT_DIR", ".")
        self.vault_name: str = os.environ.get(
            "KB_SYNC_VAULT_NAME", Path(self.vault_dir).resolve().name
        )
        self.sync_state_file: str = os.environ.get(
            "KB_SYNC_STATE_FILE", ".kb-sync-state.json"
        )
        problems = self.problems
        self.interval_minutes: int = _int_env("KB_SYNC_INTERVAL_MINUTES", 5, problems)
        self.batch_size: int = _int_env("KB_SYNC_BATCH_SIZE", 10, problems)
        self.constrained_batch_size: int = _int_env(
            "KB_SYNC_CONSTRAINED_BATCH_SIZE", 3, problems
        )
        self.max_concurrency: int = _int_env("KB_SYNC_MAX_CONCURRENCY", 4, problems)
        self.max_document_bytes: int = _int_env(
            "KB_SYNC_MAX_DOCUMENT_BYTES", 5 * 1024 * 1024, problems
        )
        self.constrained_max_document_bytes: int = _int_env(
            "KB_SYNC_CONSTRAINED_MAX_DOCUMENT_BYTES", 1024 * 1024, problems
        )
        self.constrained_pause_seconds: float = _float_env(
            "KB_SYNC_CONSTRAINED_PAUSE_SECONDS", 1.0, problems
        )
        self.network: str = os.environ.get("KB_SYNC_NETWORK", NetworkClass.UNCONSTRAINED)
        self.network_policy: str = os.environ.get(
            "KB_SYNC_NETWORK_POLICY", NetworkPolicy.ALWAYS
        )
        self.min_battery_percent: float = _float_env("KB_SYNC_MIN_BATTERY", 0, problems)
        self.debug: bool = os.environ.get("KB_SYNC_DEBUG", "") not in ("", "0", "false")

    def check(self) -> None:
        """Raise ``ConfigurationError`` if any variable could not be parsed."""
        if self.problems:
            raise ConfigurationError("; ".join(self.problems))

    def validate(self) -> None:
        self.check()
        if not self.url:
            raise ConfigurationError("KB_SYNC_URL environment variable is required")
        if not self.api_token:
            raise ConfigurationError("KB_SYNC_API_TOKEN environment variable is required")

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.api_token)

    def network_class(self) -> NetworkClass:
        try:
            return NetworkClass(self.network)
        except ValueError:
            raise ConfigurationError(
                f"KB_SYNC_NETWORK must be one of "
                f"{', '.join(c.value for c in NetworkClass)}, got {self.network!r}"
            ) from None

    def to_policy(self) -> SyncPolicy:
        """Snapshot the batching/gating settings as a ``SyncPolicy``."""
        self.check()
        try:
            network_policy = NetworkPolicy(self.network_policy)
        except ValueError:
            raise ConfigurationError(
                f"KB_SYNC_NETWORK_POLICY must be one of "
                f"{', '.join(p.value for p in NetworkPolicy)}, got {self.network_policy!r}"
            ) from None
        try:
            return SyncPolicy(
                batch_size=self.batch_size,
                constrained_batch_size=self.constrained_batch_size,
                max_concurrency=self.max_concurrency,
                max_document_bytes=self.max_document_bytes,
                constrained_max_document_bytes=self.constrained_max_document_bytes,
                constrained_pause_seconds=self.constrained_pause_seconds,
                network_policy=network_policy,
                min_battery_percent=self.min_battery_percent,
                context_name=self.vault_name,
            )
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid sync policy settings: {exc}") from exc


settings = Settings()
