"""Runtime configuration for hit reconciliation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class MarketplaceSettings:
    """Marketplace mode and offline snapshot location."""

    sandbox: bool = True
    snapshot_path: Path | None = None


@dataclass(slots=True)
class LeaseSettings:
    """Exclusive processing lease policy."""

    name: str = "hit_processor"
    max_age_seconds: int = 3_600
    retries: int = 10
    retry_backoff_seconds: float = 1.0


@dataclass(slots=True)
class EntitySettings:
    """Where the application's result entity registry lives."""

    registry_path: str | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".hitsync.db")
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "INFO"
    marketplace: MarketplaceSettings = field(default_factory=MarketplaceSettings)
    lease: LeaseSettings = field(default_factory=LeaseSettings)
    entities: EntitySettings = field(default_factory=EntitySettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        snapshot = os.getenv("HITSYNC_MARKETPLACE_SNAPSHOT", "").strip()
        return cls(
            db_path=db_path or Path(os.getenv("HITSYNC_DB_PATH", ".hitsync.db")),
            sqlite_busy_timeout_ms=int(os.getenv("HITSYNC_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("HITSYNC_LOG_LEVEL", "INFO").strip().upper(),
            marketplace=MarketplaceSettings(
                sandbox=_env_bool("HITSYNC_SANDBOX", default=True),
                snapshot_path=Path(snapshot) if snapshot else None,
            ),
            lease=LeaseSettings(
                name=os.getenv("HITSYNC_LEASE_NAME", "hit_processor"),
                max_age_seconds=int(os.getenv("HITSYNC_LEASE_MAX_AGE_SECONDS", "3600")),
                retries=int(os.getenv("HITSYNC_LEASE_RETRIES", "10")),
                retry_backoff_seconds=float(
                    os.getenv("HITSYNC_LEASE_RETRY_BACKOFF_SECONDS", "1.0"),
                ),
            ),
            entities=EntitySettings(
                registry_path=os.getenv("HITSYNC_ENTITY_REGISTRY", "").strip() or None,
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the reconciler cannot work with."""

        if logging.getLevelName(self.log_level) == f"Level {self.log_level}":
            raise ValueError(f"Invalid HITSYNC_LOG_LEVEL: {self.log_level!r}")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("HITSYNC_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if not self.lease.name.strip():
            raise ValueError("HITSYNC_LEASE_NAME must not be empty.")
        if self.lease.max_age_seconds <= 0:
            raise ValueError("HITSYNC_LEASE_MAX_AGE_SECONDS must be > 0.")
        if self.lease.retries < 0:
            raise ValueError("HITSYNC_LEASE_RETRIES must be >= 0.")
        if self.lease.retry_backoff_seconds < 0:
            raise ValueError("HITSYNC_LEASE_RETRY_BACKOFF_SECONDS must be >= 0.")
        if self.entities.registry_path is not None and ":" not in self.entities.registry_path:
            raise ValueError(
                "Invalid HITSYNC_ENTITY_REGISTRY: "
                f"{self.entities.registry_path!r}. Expected format '<module>:<attribute>'.",
            )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
