"""Aggregation of per-unit outcomes into one terminal result."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from datamold.workers import Outcome

logger = logging.getLogger(__name__)

__all__ = ["GenerationReport", "ResultAggregator", "collect", "first_error"]


@dataclass
class GenerationReport:
    """Summary of a fail-complete run."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    bytes_written: int = 0
    failed_units: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "bytes_written": self.bytes_written,
            "failed_units": list(self.failed_units),
        }


class ResultAggregator:
    """Accumulates outcomes; remembers the first error it sees."""

    def __init__(self) -> None:
        self.first_error: Optional[BaseException] = None
        self.succeeded = 0
        self.failed = 0
        self.bytes_written = 0
        self.failed_units: List[str] = []

    def add(self, outcome: Outcome) -> None:
        if outcome.error is None:
            self.succeeded += 1
            self.bytes_written += outcome.bytes_written
            return
        self.failed += 1
        self.failed_units.append(str(getattr(outcome.unit, "name", outcome.unit)))
        if self.first_error is None:
            self.first_error = outcome.error

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    def report(self) -> GenerationReport:
        return GenerationReport(
            total=self.total,
            succeeded=self.succeeded,
            failed=self.failed,
            bytes_written=self.bytes_written,
            failed_units=list(self.failed_units),
        )


def collect(outcomes: Iterable[Outcome]) -> ResultAggregator:
    """Consume ``outcomes`` to the end, even after a failure.

    Stopping early would leave producers blocked on undrained results.
    """
    aggregator = ResultAggregator()
    for outcome in outcomes:
        aggregator.add(outcome)
    return aggregator


def first_error(outcomes: Iterable[Outcome]) -> Optional[BaseException]:
    """Return the first error in consumption order, or None if all succeeded."""
    return collect(outcomes).first_error
