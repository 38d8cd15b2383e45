"""Bounded fan-out of independent units across a thread pool.

Shared by the generation pool and the controller's bulk transfers. Every
unit is attempted exactly once and produces exactly one ``Outcome``; a
failing unit never stops its siblings.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

__all__ = ["DEFAULT_THREADS", "Outcome", "fan_out"]

DEFAULT_THREADS = 10

U = TypeVar("U")


@dataclass
class Outcome(Generic[U]):
    """Result of one unit: the unit itself and its error, if any."""

    unit: U
    error: Optional[BaseException] = None
    bytes_written: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def _safe_run(work: Callable[[U], Any], unit: U) -> Outcome[U]:
    """Run ``work`` for one unit and turn any failure into its outcome."""
    try:
        written = work(unit)
        return Outcome(unit=unit, bytes_written=int(written or 0))
    except Exception as e:
        logger.error("Unit %s failed: %s", unit, e)
        return Outcome(unit=unit, error=e)


def fan_out(
    units: Sequence[U],
    work: Callable[[U], Any],
    threads: int = DEFAULT_THREADS,
) -> Iterator[Outcome[U]]:
    """Run ``work`` over ``units`` with at most ``threads`` in flight.

    Outcomes are yielded in completion order. The executor is only shut
    down once every submitted unit has finished, so consumers should drain
    the iterator (see ``datamold.generate.aggregate.collect``).

    Args:
        units: Units to process; each is submitted exactly once
        work: Callable returning the number of bytes produced for a unit
        threads: Worker count; values below 1 are treated as 1
    """
    if threads <= 0:
        threads = 1

    logger.debug("Starting %d units on %d workers", len(units), threads)

    with ThreadPoolExecutor(max_workers=threads, thread_name_prefix="datamold-worker") as executor:
        futures = [executor.submit(_safe_run, work, unit) for unit in units]
        for future in as_completed(futures):
            yield future.result()
