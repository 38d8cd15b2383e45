"""Transfer controller.

Wraps any StorageBackend with uniform logging and a worker-count policy,
so call sites work against the capability set without knowing which
provider is plugged in. Bulk transfers (put, get, copy_to) reuse the
fail-complete fan-out of the generation pool.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from datamold.errors import TransferError
from datamold.generate.aggregate import GenerationReport, collect
from datamold.storage.base import ObjectInfo, Readable, StorageBackend, Writable
from datamold.workers import DEFAULT_THREADS, fan_out

logger = logging.getLogger(__name__)

__all__ = ["TransferController", "COPY_CHUNK_SIZE"]

COPY_CHUNK_SIZE = 1024 * 1024


class TransferController:
    """Orchestrates bucket lifecycle and object transfers for one backend.

    Example:
        >>> controller = TransferController(storage, threads=4, logger=log)
        >>> controller.create_bucket()
        >>> controller.put("./dummy")
        >>> controller.copy_to(TransferController(other_storage))

    Args:
        storage: Backend to drive
        threads: Worker count for bulk transfers; ignored unless >= 1
        logger: Logging sink (logging.Logger or TransferLogger); None
            disables the controller's log lines
    """

    def __init__(
        self,
        storage: StorageBackend,
        *,
        threads: Optional[int] = None,
        logger: Any = None,
    ) -> None:
        self.storage = storage
        self.threads = DEFAULT_THREADS
        if threads is not None and threads >= 1:
            self.threads = threads
        self.logger = logger

    @property
    def bucket(self) -> str:
        return self.storage.bucket

    def _log(self, level: str, msg: str, err: Optional[BaseException] = None) -> None:
        if self.logger is None:
            return
        if level == "info":
            self.logger.info(msg)
        elif level == "error":
            self.logger.error("%s : %s", msg, err)

    def _metric(self, name: str, value: Any, unit: Optional[str] = None, **tags: Any) -> None:
        # Plain logging.Logger sinks have no metric hook.
        metric = getattr(self.logger, "metric", None)
        if metric is not None:
            metric(name, value, unit=unit, bucket=self.bucket, **tags)

    def _call(self, operation: str, func: Callable[[], Any]) -> Any:
        try:
            result = func()
        except Exception as e:
            self._log("error", f"{operation} failed for bucket {self.bucket}", e)
            raise
        self._log("info", f"{operation} succeeded for bucket {self.bucket}")
        return result

    def create_bucket(self) -> None:
        self._call("create bucket", self.storage.create_bucket)

    def delete_bucket(self) -> None:
        self._call("delete bucket", self.storage.delete_bucket)

    def object_list(self) -> List[ObjectInfo]:
        objects = self._call("object list", self.storage.object_list)
        self._metric("objects_listed", len(objects), unit="objects")
        return objects

    def open(self, name: str) -> Readable:
        return self.storage.open(name)

    def create(self, name: str) -> Writable:
        return self.storage.create(name)

    # ------------------------------------------------------------------
    # Bulk transfers
    # ------------------------------------------------------------------

    def _run_transfers(
        self,
        operation: str,
        keys: List[str],
        work: Callable[[str], int],
    ) -> GenerationReport:
        aggregator = collect(fan_out(keys, work, self.threads))
        report = aggregator.report()
        logger.info(
            "%s complete for %s: %d successful, %d failed out of %d total",
            operation,
            self.bucket,
            report.succeeded,
            report.failed,
            report.total,
        )
        self._metric("objects_transferred", report.succeeded, unit="objects", operation=operation)
        self._metric("objects_failed", report.failed, unit="objects", operation=operation)
        self._metric("bytes_transferred", report.bytes_written, unit="bytes", operation=operation)

        if aggregator.first_error is not None:
            self._log("error", f"{operation} failed for bucket {self.bucket}", aggregator.first_error)
            raise TransferError(
                f"{report.failed} of {report.total} objects failed to {operation}",
                report=report,
                cause=aggregator.first_error,
            ) from aggregator.first_error
        self._log("info", f"{operation} succeeded for bucket {self.bucket}")
        return report

    def _object_keys(self) -> List[str]:
        """Keys to transfer; folder markers (``prefix/``) carry no data."""
        keys = []
        for obj in self.object_list():
            if obj.key.endswith("/"):
                logger.debug("Skipping folder marker %s in %s", obj.key, self.bucket)
                continue
            keys.append(obj.key)
        return keys

    def put(self, local_dir: Union[str, Path]) -> GenerationReport:
        """Upload every file under ``local_dir``, keyed by relative path."""
        root = Path(local_dir)
        if not root.is_dir():
            raise NotADirectoryError(f"{root} is not a directory")
        keys = sorted(
            path.relative_to(root).as_posix() for path in root.rglob("*") if path.is_file()
        )

        def _upload(key: str) -> int:
            with (root / key).open("rb") as src, self.storage.create(key) as dst:
                return _copy_stream(src, dst)

        return self._run_transfers("upload", keys, _upload)

    def get(self, local_dir: Union[str, Path]) -> GenerationReport:
        """Download every object into ``local_dir/<key>``.

        A key that would resolve outside ``local_dir`` (``../x``) fails
        its unit with ValueError and nothing is written for it.
        """
        root = Path(local_dir).resolve()
        keys = self._object_keys()

        def _download(key: str) -> int:
            path = (root / key).resolve()
            if root not in path.parents:
                raise ValueError(f"Object key escapes {root}: {key!r}")
            path.parent.mkdir(parents=True, exist_ok=True)
            with self.storage.open(key) as src, path.open("wb") as dst:
                return _copy_stream(src, dst)

        return self._run_transfers("download", keys, _download)

    def copy_to(self, target: "TransferController") -> GenerationReport:
        """Stream every object of this bucket into ``target``'s bucket."""
        keys = self._object_keys()

        def _copy(key: str) -> int:
            with self.storage.open(key) as src, target.create(key) as dst:
                return _copy_stream(src, dst)

        return self._run_transfers("copy", keys, _copy)

    def __repr__(self) -> str:
        return f"TransferController(storage={self.storage!r}, threads={self.threads})"


def _copy_stream(src: Any, dst: Any, chunk_size: int = COPY_CHUNK_SIZE) -> int:
    """Copy ``src`` to ``dst`` in chunks and return the byte count."""
    copied = 0
    while True:
        chunk = src.read(chunk_size)
        if not chunk:
            break
        dst.write(chunk)
        copied += len(chunk)
    return copied
