"""
Storage factory for creating storage backends.

Provides unified interface for creating the appropriate storage backend
based on configuration.
"""
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from config import CrushConfig

from storage.base import StorageBackend, LocalStorage, S3Storage

logger = logging.getLogger(__name__)


def _create_backend_from_layer_config(
    layer_config,
    layer_name: str
) -> StorageBackend:
    """
    Create storage backend from layer-specific config.

    Args:
        layer_config: StorageLayerConfig
        layer_name: Name for logging

    Returns:
        StorageBackend instance
    """
    backend = layer_config.backend
    base_dir = layer_config.base_dir

    if backend == "local":
        logger.info(f"[{layer_name}] Initializing local storage: {base_dir}")
        return LocalStorage(base_path=base_dir)

    elif backend == "s3":
        if not layer_config.s3:
            raise ValueError(f"[{layer_name}] S3 backend selected but no S3 configuration provided")

        # Use s3.bucket if specified, otherwise base_dir
        bucket = layer_config.s3.bucket or base_dir

        logger.info(f"[{layer_name}] Initializing S3 storage: {bucket}")
        return S3Storage(
            bucket=bucket,
            region=layer_config.s3.region,
            aws_access_key_id=layer_config.s3.aws_access_key_id,
            aws_secret_access_key=layer_config.s3.aws_secret_access_key,
            aws_session_token=layer_config.s3.aws_session_token,
            endpoint_url=layer_config.s3.endpoint_url,
        )

    else:
        raise ValueError(f"[{layer_name}] Unknown storage backend: {backend}")


def create_crush_storage(config: "CrushConfig") -> StorageBackend:
    """
    Create storage backend holding the tree to crush.

    Args:
        config: FileCrush configuration

    Returns:
        StorageBackend instance
    """
    return _create_backend_from_layer_config(config.storage, "crush")
