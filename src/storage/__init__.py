"""
Storage module for the content-addressed byte store.

This module provides the abstract storage interface and concrete local
filesystem and S3-compatible bucket backends.
"""

from .base import (
    BaseStorage,
    MEDIA_PREFIX,
    TEMP_UPLOAD_PREFIX,
    TEMP_YOUTUBE_PREFIX,
    media_key,
)
from .cloud import CloudStorage
from .local import LocalStorage


def get_storage(config) -> BaseStorage:
    """Build the storage backend selected by an IngestionConfig."""
    if config.storage_backend == "cloud":
        return CloudStorage(
            bucket_name=config.bucket_name,
            endpoint=config.bucket_endpoint,
            key_id=config.bucket_key_id,
            access_key=config.bucket_access_key,
            region=config.bucket_region,
        )
    if config.storage_backend != "local":
        raise ValueError(f"Unknown storage backend: {config.storage_backend}")
    return LocalStorage(config.storage_root)


__all__ = [
    "BaseStorage",
    "CloudStorage",
    "LocalStorage",
    "MEDIA_PREFIX",
    "TEMP_UPLOAD_PREFIX",
    "TEMP_YOUTUBE_PREFIX",
    "get_storage",
    "media_key",
]
