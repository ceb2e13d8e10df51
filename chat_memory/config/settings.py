"""Memory subsystem settings and configuration schema."""

import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field


StorageBackend = Literal["local", "remote", "auto"]

_TRUE_VALUES = {"1", "true", "yes", "on"}


class LocalStorageSettings(BaseModel):
    """Filesystem backend configuration."""
    base_path: str = ".chat_memory"
    lock_timeout: Optional[float] = Field(
        None, description="Seconds to wait for a user lock; None waits forever"
    )


class RemoteStorageSettings(BaseModel):
    """Remote blob store configuration."""
    base_url: str = "https://blob.vercel-storage.com"
    token: Optional[str] = None
    prefix: str = "memories"
    max_retries: int = 3
    timeout: float = 10.0
    retry_delay: float = 0.5


class MemorySettings(BaseModel):
    """Main memory subsystem settings."""
    max_memories_per_user: int = 1000
    ttl_days: int = 30
    enable_auto_extraction: bool = True
    enable_explicit_commands: bool = True
    storage: StorageBackend = "auto"
    platform_marker: bool = False
    local: LocalStorageSettings = LocalStorageSettings()
    remote: RemoteStorageSettings = RemoteStorageSettings()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MemorySettings":
        """
        Build settings from environment variables.

        Unset variables keep their defaults; numeric values that fail to
        parse fall back to the default as well.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            MemorySettings instance
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        storage = env.get("MEMORY_STORAGE", defaults.storage).strip().lower()
        if storage not in ("local", "remote", "auto"):
            storage = defaults.storage

        return cls(
            max_memories_per_user=_int(env.get("MEMORY_MAX_PER_USER"), defaults.max_memories_per_user),
            ttl_days=_int(env.get("MEMORY_TTL_DAYS"), defaults.ttl_days),
            enable_auto_extraction=_flag(env.get("MEMORY_AUTO_EXTRACT"), defaults.enable_auto_extraction),
            enable_explicit_commands=_flag(
                env.get("MEMORY_EXPLICIT_COMMANDS"), defaults.enable_explicit_commands
            ),
            storage=storage,
            platform_marker=env.get("VERCEL") == "1",
            local=LocalStorageSettings(
                base_path=env.get("MEMORY_LOCAL_PATH", defaults.local.base_path),
                lock_timeout=_float(env.get("MEMORY_LOCK_TIMEOUT"), defaults.local.lock_timeout),
            ),
            remote=RemoteStorageSettings(
                base_url=env.get("BLOB_API_URL", defaults.remote.base_url),
                token=env.get("BLOB_READ_WRITE_TOKEN") or None,
                prefix=env.get("MEMORY_BLOB_PREFIX", defaults.remote.prefix),
            ),
        )

    def resolve_backend(self) -> Literal["local", "remote"]:
        """Resolve 'auto' to a concrete backend name."""
        if self.storage != "auto":
            return self.storage
        if self.remote.token and self.platform_marker:
            return "remote"
        return "local"


def _int(raw: Optional[str], default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float(raw: Optional[str], default: Optional[float]) -> Optional[float]:
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _flag(raw: Optional[str], default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE_VALUES
