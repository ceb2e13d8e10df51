"""Configuration models for the memory subsystem."""

from .settings import LocalStorageSettings, MemorySettings, RemoteStorageSettings, StorageBackend

__all__ = [
    "LocalStorageSettings",
    "MemorySettings",
    "RemoteStorageSettings",
    "StorageBackend",
]
