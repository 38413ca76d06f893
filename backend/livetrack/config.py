"""
Configuration for the point cache and the sync engine.

Defaults can be overridden from the environment via the from_env()
constructors; tests construct the dataclasses directly.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_CACHE_PREFIX = "livetrack_cache_"
DEFAULT_CACHE_VERSION = "v1"
DEFAULT_CACHE_RETENTION_S = 24 * 60 * 60
DEFAULT_POLL_INTERVAL_S = 10.0
DEFAULT_STARTUP_DELAY_S = 2.0
DEFAULT_DATA_FOLDER = Path("./data/sessions")

# Primary ordering field of the point store, and the legacy fallback
ORDER_FIELD = "timestamp_ms"
FALLBACK_ORDER_FIELD = "timestamp"


@dataclass(frozen=True)
class CacheConfig:
    """Local point cache settings."""

    key_prefix: str = DEFAULT_CACHE_PREFIX
    schema_version: str = DEFAULT_CACHE_VERSION
    retention_s: float = DEFAULT_CACHE_RETENTION_S

    @property
    def retention_ms(self) -> int:
        return int(self.retention_s * 1000)

    @classmethod
    def from_env(cls) -> "CacheConfig":
        return cls(
            key_prefix=os.getenv("LIVETRACK_CACHE_PREFIX", DEFAULT_CACHE_PREFIX),
            schema_version=os.getenv("LIVETRACK_CACHE_VERSION", DEFAULT_CACHE_VERSION),
            retention_s=float(os.getenv("LIVETRACK_CACHE_RETENTION_S", str(DEFAULT_CACHE_RETENTION_S))),
        )


@dataclass(frozen=True)
class SyncConfig:
    """Sync engine timing and ordering settings."""

    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    startup_delay_s: float = DEFAULT_STARTUP_DELAY_S
    order_field: str = ORDER_FIELD
    fallback_order_field: str = FALLBACK_ORDER_FIELD

    @classmethod
    def from_env(cls) -> "SyncConfig":
        return cls(
            poll_interval_s=float(os.getenv("LIVETRACK_POLL_INTERVAL_S", str(DEFAULT_POLL_INTERVAL_S))),
            startup_delay_s=float(os.getenv("LIVETRACK_STARTUP_DELAY_S", str(DEFAULT_STARTUP_DELAY_S))),
        )


def data_folder_from_env() -> Path:
    """Folder of per-session CSV files served by the CSV point store."""
    return Path(os.getenv("LIVETRACK_DATA_FOLDER", str(DEFAULT_DATA_FOLDER)))


def cache_folder_from_env() -> Optional[Path]:
    """Folder for the on-disk cache; None keeps the cache in memory."""
    folder = os.getenv("LIVETRACK_CACHE_FOLDER")
    return Path(folder) if folder else None
