"""Local filesystem storage backend.

The bucket is the directory ``root/bucket`` and object keys are POSIX
paths relative to it. Objects are read and written with plain file
handles; no background thread is involved.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List, Union

from datamold.errors import BucketConflictError, BucketNotFoundError, StorageError
from datamold.storage.base import ObjectInfo, StorageBackend

logger = logging.getLogger(__name__)

__all__ = ["LocalStorage", "compute_file_md5"]


def compute_file_md5(path: Path) -> str:
    """Compute the MD5 hex digest of a file in 1MB chunks."""
    hasher = hashlib.md5()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


class LocalStorage(StorageBackend):
    """Local filesystem storage backend.

    Example:
        >>> storage = LocalStorage("./data", "dummy-bucket")
        >>> storage.create_bucket()
        >>> with storage.create("csv/artifact_0.csv") as f:
        ...     f.write(b"id,name\\n")
    """

    def __init__(self, root: Union[str, Path], bucket: str) -> None:
        if not bucket:
            raise ValueError("bucket is required for local storage")
        super().__init__(bucket)
        self.root = Path(root).expanduser().resolve()
        self.bucket_dir = self.root / bucket

    @property
    def scheme(self) -> str:
        return "local"

    def _resolve_path(self, name: str) -> Path:
        candidate = (self.bucket_dir / name.lstrip("/")).resolve()
        if candidate == self.bucket_dir or self.bucket_dir not in candidate.parents:
            raise ValueError(f"Object key escapes bucket {self.bucket}: {name!r}")
        return candidate

    def create_bucket(self) -> None:
        if self.bucket_dir.exists() and not self.bucket_dir.is_dir():
            raise BucketConflictError(
                f"{self.bucket_dir} exists and is not a directory",
                provider="local",
                bucket=self.bucket,
            )
        try:
            self.bucket_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to create bucket directory {self.bucket_dir}",
                provider="local",
                bucket=self.bucket,
                cause=e,
            ) from e
        logger.info("Created bucket directory %s", self.bucket_dir)

    def delete_bucket(self) -> None:
        objects = self.object_list()
        for obj in objects:
            try:
                self._resolve_path(obj.key).unlink()
            except OSError as e:
                raise StorageError(
                    f"Failed to delete object {obj.key}",
                    provider="local",
                    bucket=self.bucket,
                    cause=e,
                ) from e
        # Only empty directories remain at this point.
        shutil.rmtree(self.bucket_dir)
        logger.info("Deleted bucket directory %s (%d objects)", self.bucket_dir, len(objects))

    def object_list(self) -> List[ObjectInfo]:
        if not self.bucket_dir.is_dir():
            raise BucketNotFoundError(
                f"Bucket directory {self.bucket_dir} does not exist",
                provider="local",
                bucket=self.bucket,
            )

        objects: List[ObjectInfo] = []
        for path in sorted(self.bucket_dir.rglob("*")):
            if not path.is_file():
                continue
            stat = path.stat()
            objects.append(
                ObjectInfo(
                    key=path.relative_to(self.bucket_dir).as_posix(),
                    size=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    etag=f'"{compute_file_md5(path)}"',
                    storage_class="STANDARD",
                )
            )
        return objects

    def open(self, name: str) -> BinaryIO:
        return self._resolve_path(name).open("rb")

    def create(self, name: str) -> BinaryIO:
        path = self._resolve_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path.open("wb")
