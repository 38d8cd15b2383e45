"""Generation worker pool.

Partitions a capacity budget into units, fans them out over a fixed
number of worker threads, writes each unit through a sink and aggregates
the outcomes. Runs are fail-complete: every unit is attempted, and the
first failure is raised only after all of them finished.
"""

from __future__ import annotations

import logging
import os
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from datamold.errors import GenerationError, GenerationSetupError
from datamold.generate.aggregate import GenerationReport, collect
from datamold.generate.encoders import Encoder, get_encoder
from datamold.storage.base import StorageBackend
from datamold.workers import DEFAULT_THREADS, fan_out

logger = logging.getLogger(__name__)

__all__ = [
    "UNIT_DENSITY",
    "CAPACITY_UNIT_BYTES",
    "GenerationUnit",
    "GenerationPool",
    "ensure_directory",
]

UNIT_DENSITY = 10
CAPACITY_UNIT_BYTES = 1024 ** 3

SinkOpener = Callable[[str], Any]


@dataclass(frozen=True)
class GenerationUnit:
    """One artifact to produce; ``name`` depends only on ``index``."""

    index: int
    name: str

    def __str__(self) -> str:
        return self.name


def ensure_directory(path: Union[str, Path]) -> Path:
    """Create ``path`` if needed and check it is a writable directory."""
    directory = Path(path).expanduser()
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except (FileExistsError, NotADirectoryError) as e:
        raise GenerationSetupError(
            f"{directory} is not a directory", path=str(directory), cause=e
        ) from e
    except OSError as e:
        raise GenerationSetupError(
            f"Cannot create directory {directory}", path=str(directory), cause=e
        ) from e
    if not os.access(directory, os.W_OK | os.X_OK):
        raise GenerationSetupError(
            f"Directory {directory} is not writable", path=str(directory)
        )
    return directory


class GenerationPool:
    """Produces ``capacity * unit_density`` artifacts of one format.

    Example:
        >>> pool = GenerationPool("txt", threads=4, unit_bytes=1024)
        >>> report = pool.generate("/tmp/out", 1)
        >>> report.succeeded
        10

    Args:
        encoder: Encoder instance or registered format name
        threads: Worker count; values below 1 fall back to the default
        unit_density: Units per capacity unit
        unit_bytes: Target size of each unit; defaults to an equal share
            of one capacity unit (1 GiB / unit_density)
        prefix: Artifact name prefix
        seed: Makes artifact content reproducible per unit index
    """

    def __init__(
        self,
        encoder: Union[Encoder, str],
        *,
        threads: int = DEFAULT_THREADS,
        unit_density: int = UNIT_DENSITY,
        unit_bytes: Optional[int] = None,
        prefix: str = "artifact",
        seed: Optional[int] = None,
    ) -> None:
        self.encoder = get_encoder(encoder) if isinstance(encoder, str) else encoder
        self.threads = threads if threads >= 1 else DEFAULT_THREADS
        if unit_density < 1:
            raise ValueError("unit_density must be >= 1")
        self.unit_density = unit_density
        self.unit_bytes = (
            CAPACITY_UNIT_BYTES // unit_density if unit_bytes is None else unit_bytes
        )
        self.prefix = prefix
        self.seed = seed

    def unit_name(self, index: int, key_prefix: str = "") -> str:
        return f"{key_prefix}{self.prefix}_{index}.{self.encoder.extension}"

    def units(self, capacity: int, key_prefix: str = "") -> List[GenerationUnit]:
        if capacity < 1:
            raise GenerationSetupError(f"Capacity must be a positive integer, got {capacity}")
        total = capacity * self.unit_density
        return [
            GenerationUnit(index=index, name=self.unit_name(index, key_prefix))
            for index in range(total)
        ]

    def _rng(self, index: int) -> random.Random:
        if self.seed is None:
            return random.Random()
        return random.Random(f"{self.seed}:{index}")

    def generate(self, destination_dir: Union[str, Path], capacity: int) -> GenerationReport:
        """Write every unit as a file under ``destination_dir``.

        Raises:
            GenerationSetupError: Before any work, if the destination or
                capacity is unusable
            GenerationError: After all units ran, if any of them failed
        """
        units = self.units(capacity)
        directory = ensure_directory(destination_dir)

        def _open(name: str) -> Any:
            return open(directory / name, "wb")

        return self._run(units, _open, str(directory))

    def generate_to(
        self,
        storage: Any,
        capacity: int,
        key_prefix: str = "",
    ) -> GenerationReport:
        """Write every unit as an object through ``storage.create``.

        ``storage`` is a StorageBackend or anything exposing ``create``
        (such as a TransferController).
        """
        units = self.units(capacity, key_prefix)
        target = storage.bucket if isinstance(storage, StorageBackend) else repr(storage)
        return self._run(units, storage.create, target)

    def _produce(self, unit: GenerationUnit, open_sink: SinkOpener) -> int:
        with open_sink(unit.name) as sink:
            written = self.encoder.encode(sink, self.unit_bytes, self._rng(unit.index))
        logger.info("Generated %s (%d bytes)", unit.name, written)
        return written

    def _run(
        self,
        units: List[GenerationUnit],
        open_sink: SinkOpener,
        target: str,
    ) -> GenerationReport:
        logger.info(
            "Generating %d %s artifacts into %s with %d workers",
            len(units),
            self.encoder.name,
            target,
            self.threads,
        )

        aggregator = collect(
            fan_out(units, lambda unit: self._produce(unit, open_sink), self.threads)
        )
        report = aggregator.report()

        logger.info(
            "Generation complete: %d successful, %d failed out of %d total",
            report.succeeded,
            report.failed,
            report.total,
        )

        if aggregator.first_error is not None:
            raise GenerationError(
                f"{report.failed} of {report.total} {self.encoder.name} artifacts failed",
                report=report,
                cause=aggregator.first_error,
            ) from aggregator.first_error
        return report
