"""Multi-format dataset generation driven by a GenerateConfig."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from datamold.config import GenerateConfig
from datamold.errors import ConfigurationError, GenerationError
from datamold.generate.aggregate import GenerationReport
from datamold.generate.pool import GenerationPool

logger = logging.getLogger(__name__)

__all__ = ["generate_dataset"]


def generate_dataset(
    config: GenerateConfig,
    storage: Optional[Any] = None,
) -> Dict[str, GenerationReport]:
    """Generate every format listed in ``config.sizes``.

    Local runs write to ``<destination>/<format>/``; runs against
    ``storage`` write objects under the ``<format>/`` key prefix. Formats
    run one after another and a failing format does not stop the rest.

    Returns:
        Report per format

    Raises:
        GenerationError: After all formats ran, if any unit failed
    """
    if storage is None and not config.destination:
        raise ConfigurationError(
            "generate.destination is required when no storage is configured",
            field="generate.destination",
        )

    reports: Dict[str, GenerationReport] = {}
    first_failure: Optional[GenerationError] = None

    for fmt, capacity in config.sizes.items():
        if capacity <= 0:
            logger.debug("Skipping %s: capacity %d", fmt, capacity)
            continue

        pool = GenerationPool(
            fmt,
            threads=config.threads,
            unit_density=config.unit_density,
            unit_bytes=config.unit_bytes,
            prefix=config.prefix,
            seed=config.seed,
        )
        try:
            if storage is None:
                reports[fmt] = pool.generate(Path(config.destination) / fmt, capacity)
            else:
                reports[fmt] = pool.generate_to(storage, capacity, key_prefix=f"{fmt}/")
        except GenerationError as e:
            logger.error("Generating %s failed: %s", fmt, e.message)
            if e.report is not None:
                reports[fmt] = e.report
            if first_failure is None:
                first_failure = e

    if first_failure is not None:
        raise first_failure
    return reports
