"""Storage backend abstraction.

Provides one capability interface over object stores and the local
filesystem, plus a registry mapping provider names to backend factories.

Usage:
    from datamold.config import StorageConfig
    from datamold.storage import get_storage

    storage = get_storage(StorageConfig(provider="aws", bucket="dummy"))
    storage = get_storage(StorageConfig(provider="local", root="./data", bucket="dummy"))
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List

from datamold.config import Provider, StorageConfig
from datamold.errors import ConfigurationError
from datamold.storage.base import ObjectInfo, StorageBackend
from datamold.storage.local import LocalStorage
from datamold.storage.pipe import Pipe, ReadHandle, WriteHandle, open_for_read, open_for_write
from datamold.storage.s3 import S3Storage

logger = logging.getLogger(__name__)

__all__ = [
    "StorageBackend",
    "ObjectInfo",
    "LocalStorage",
    "S3Storage",
    "Pipe",
    "ReadHandle",
    "WriteHandle",
    "open_for_read",
    "open_for_write",
    "register_backend",
    "list_backends",
    "get_storage",
]

BackendFactory = Callable[[StorageConfig], StorageBackend]

BACKEND_REGISTRY: Dict[str, BackendFactory] = {}


def register_backend(*names: str) -> Callable[[BackendFactory], BackendFactory]:
    """Decorator to register a storage backend factory under provider names.

    Usage:
        @register_backend("my_provider")
        def my_factory(config: StorageConfig) -> StorageBackend:
            return MyBackend(config.bucket)
    """

    def decorator(factory: BackendFactory) -> BackendFactory:
        for name in names:
            BACKEND_REGISTRY[name.lower()] = factory
        return factory

    return decorator


def list_backends() -> List[str]:
    """Return all registered provider identifiers."""
    return sorted(BACKEND_REGISTRY.keys())


@register_backend(Provider.aws.value, Provider.gcp.value, Provider.ncp.value, Provider.minio.value)
def _s3_factory(config: StorageConfig) -> StorageBackend:
    access_key, secret_key = config.resolved_credentials()
    return S3Storage(
        config.bucket,
        provider=config.provider.value,
        region=config.resolved_region(),
        endpoint_url=config.resolved_endpoint_url(),
        access_key=access_key,
        secret_key=secret_key,
        part_size=config.part_size,
        page_size=config.page_size,
    )


@register_backend(Provider.local.value)
def _local_factory(config: StorageConfig) -> StorageBackend:
    if not config.root:
        raise ConfigurationError(
            "Local storage requires a root directory",
            field="root",
            suggestion="Set storage.root to the directory that holds the bucket.",
        )
    return LocalStorage(config.root, config.bucket)


def get_storage(config: StorageConfig) -> StorageBackend:
    """Get a storage backend instance for the given configuration."""
    provider = config.provider.value
    factory = BACKEND_REGISTRY.get(provider)
    if factory is None:
        raise ConfigurationError(
            f"Storage provider '{provider}' is not available. "
            f"Available providers: {', '.join(list_backends())}.",
            field="provider",
            value=provider,
        )
    backend = factory(config)
    logger.debug("Using %s backend for provider %s", backend.scheme, provider)
    return backend
