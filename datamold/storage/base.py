"""Abstract base class for storage backends.

Defines the capability set every provider implements: bucket lifecycle,
full object listing, and streaming open/create of single objects.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, BinaryIO, Dict, List, Union

from datamold.storage.pipe import ReadHandle, WriteHandle

logger = logging.getLogger(__name__)

__all__ = ["StorageBackend", "ObjectInfo", "Readable", "Writable"]

Readable = Union[ReadHandle, BinaryIO]
Writable = Union[WriteHandle, BinaryIO]


@dataclass(frozen=True)
class ObjectInfo:
    """Descriptor of one stored object, as reported by ``object_list``."""

    key: str
    size: int
    last_modified: datetime
    etag: str
    storage_class: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "size": self.size,
            "last_modified": self.last_modified.isoformat(),
            "etag": self.etag,
            "storage_class": self.storage_class,
        }


class StorageBackend(ABC):
    """Abstract base class for storage backends.

    A backend is bound to one bucket. Instances are shared by worker
    threads, so implementations must be safe for concurrent ``open`` and
    ``create`` calls.
    """

    def __init__(self, bucket: str) -> None:
        self.bucket = bucket

    @property
    @abstractmethod
    def scheme(self) -> str:
        """Return the backend identifier (e.g., 's3', 'local')."""

    @abstractmethod
    def create_bucket(self) -> None:
        """Create the bucket; succeed silently if we already own it."""

    @abstractmethod
    def delete_bucket(self) -> None:
        """Delete every object in the bucket, then the bucket itself."""

    @abstractmethod
    def object_list(self) -> List[ObjectInfo]:
        """Return every object in the bucket.

        Raises:
            ObjectListError: If enumeration fails part way, with the
                objects listed so far attached
        """

    @abstractmethod
    def open(self, name: str) -> Readable:
        """Open an object for streaming read."""

    @abstractmethod
    def create(self, name: str) -> Writable:
        """Create (or overwrite) an object for streaming write.

        The object is committed when the returned handle is closed.
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(bucket={self.bucket!r})"
