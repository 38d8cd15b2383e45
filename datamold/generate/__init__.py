"""Synthetic dataset generation."""

from datamold.generate.aggregate import GenerationReport, ResultAggregator, collect, first_error
from datamold.generate.dataset import generate_dataset
from datamold.generate.encoders import Encoder, get_encoder, list_encoders, register_encoder
from datamold.generate.pool import (
    CAPACITY_UNIT_BYTES,
    UNIT_DENSITY,
    GenerationPool,
    GenerationUnit,
)

__all__ = [
    "CAPACITY_UNIT_BYTES",
    "UNIT_DENSITY",
    "Encoder",
    "GenerationPool",
    "GenerationReport",
    "GenerationUnit",
    "ResultAggregator",
    "collect",
    "first_error",
    "generate_dataset",
    "get_encoder",
    "list_encoders",
    "register_encoder",
]
