"""Synthetic test data generation and object-storage migration.

Usage:
    from datamold import GenerationPool, TransferController, get_storage

    GenerationPool("csv", threads=10).generate("./dummy/csv", 1)

    controller = TransferController(get_storage(storage_config), threads=10)
    controller.create_bucket()
    controller.put("./dummy")
"""

from datamold.config import GenerateConfig, JobConfig, StorageConfig, load_job_config
from datamold.controller import TransferController
from datamold.errors import (
    DataMoldError,
    GenerationError,
    GenerationSetupError,
    StorageError,
    TransferError,
)
from datamold.generate import GenerationPool, GenerationReport, generate_dataset
from datamold.storage import LocalStorage, ObjectInfo, S3Storage, StorageBackend, get_storage

__version__ = "1.0.0"

__all__ = [
    "DataMoldError",
    "GenerateConfig",
    "GenerationError",
    "GenerationPool",
    "GenerationReport",
    "GenerationSetupError",
    "JobConfig",
    "LocalStorage",
    "ObjectInfo",
    "S3Storage",
    "StorageBackend",
    "StorageConfig",
    "StorageError",
    "TransferController",
    "TransferError",
    "generate_dataset",
    "get_storage",
    "load_job_config",
]
