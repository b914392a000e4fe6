"""Storage backends for FileCrush."""
from .base import StorageBackend, LocalStorage, S3Storage
from .factory import create_crush_storage

__all__ = [
    "StorageBackend",
    "LocalStorage",
    "S3Storage",
    "create_crush_storage",
]
