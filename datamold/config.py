"""Typed job configuration using Pydantic for validation.

A job file is YAML with up to three sections::

    generate:
      destination: ./dummy
      sizes: {txt: 1, csv: 2}
      threads: 10
    storage:            # where generated data goes, or the source of put/get
      provider: aws
      bucket: dummy-bucket
      region: ap-northeast-2
    target:             # destination of a migrate run
      provider: local
      root: ./mirror
      bucket: dummy-bucket

String values may reference environment variables as ``${NAME}`` or
``${NAME:-fallback}``; an unset variable without a fallback is an error.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from datamold.env import load_env_file, resolve_env_refs
from datamold.errors import ConfigurationError

__all__ = [
    "Provider",
    "StorageConfig",
    "GenerateConfig",
    "JobConfig",
    "load_job_config",
]

MIB = 1024 * 1024


class Provider(str, Enum):
    aws = "aws"
    gcp = "gcp"
    ncp = "ncp"
    minio = "minio"
    local = "local"


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: Provider = Provider.aws
    bucket: str
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    root: Optional[str] = None
    part_size_mb: int = 128
    page_size: int = 1000

    @field_validator("bucket")
    def _validate_bucket(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("bucket must not be empty")
        return value

    @field_validator("part_size_mb")
    def _validate_part_size(cls, value: int) -> int:
        # S3 rejects multipart parts below 5 MiB
        if value < 5:
            raise ValueError("part_size_mb must be >= 5")
        return value

    @field_validator("page_size")
    def _validate_page_size(cls, value: int) -> int:
        if not 1 <= value <= 1000:
            raise ValueError("page_size must be between 1 and 1000")
        return value

    @property
    def part_size(self) -> int:
        return self.part_size_mb * MIB

    def resolved_region(self) -> Optional[str]:
        return self.region or os.environ.get("AWS_REGION") or os.environ.get(
            "AWS_DEFAULT_REGION"
        )

    def resolved_endpoint_url(self) -> Optional[str]:
        return self.endpoint_url or os.environ.get("AWS_ENDPOINT_URL")

    def resolved_credentials(self) -> tuple[Optional[str], Optional[str]]:
        access_key = self.access_key or os.environ.get("AWS_ACCESS_KEY_ID")
        secret_key = self.secret_key or os.environ.get("AWS_SECRET_ACCESS_KEY")
        return access_key, secret_key


class GenerateConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    destination: Optional[str] = None
    sizes: Dict[str, int] = Field(default_factory=dict)
    threads: int = 10
    unit_density: int = 10
    unit_bytes: Optional[int] = None
    prefix: str = "artifact"
    seed: Optional[int] = None

    @field_validator("sizes")
    def _validate_sizes(cls, value: Dict[str, int]) -> Dict[str, int]:
        from datamold.generate.encoders import list_encoders

        known = set(list_encoders())
        normalized: Dict[str, int] = {}
        for name, capacity in value.items():
            key = name.lower()
            if key not in known:
                raise ValueError(
                    f"unknown format '{name}'; expected one of {sorted(known)}"
                )
            if capacity < 0:
                raise ValueError(f"capacity for '{name}' must be >= 0")
            normalized[key] = capacity
        return normalized

    @field_validator("threads", "unit_density")
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("unit_bytes")
    def _validate_unit_bytes(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("unit_bytes must be >= 0")
        return value

    def with_overrides(self, **updates: Any) -> "GenerateConfig":
        """Return a validated copy with command-line overrides applied."""
        try:
            return GenerateConfig.model_validate({**self.model_dump(), **updates})
        except ValidationError as exc:
            raise _format_validation_error(exc) from exc


class JobConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    generate: Optional[GenerateConfig] = None
    storage: Optional[StorageConfig] = None
    target: Optional[StorageConfig] = None
    threads: Optional[int] = None


def _format_validation_error(exc: ValidationError) -> ConfigurationError:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return ConfigurationError(
        f"Invalid job configuration: {first.get('msg')}",
        field=field or None,
        value=first.get("input"),
        details={"error_count": exc.error_count()},
    )


def parse_job_config(data: Dict[str, Any]) -> JobConfig:
    """Validate an already-loaded mapping into a JobConfig."""
    try:
        return JobConfig.model_validate(resolve_env_refs(data))
    except ValidationError as exc:
        raise _format_validation_error(exc) from exc


def load_job_config(
    path: Union[str, Path],
    *,
    env_file: Optional[Union[str, Path]] = None,
) -> JobConfig:
    """Load a YAML job file, expanding ${VAR} references.

    Args:
        path: Path to the YAML job file
        env_file: Optional .env file loaded before expansion

    Raises:
        ConfigurationError: If the file is missing, not a mapping or invalid
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigurationError(
            f"Config file not found: {config_path}",
            field="config",
            value=str(config_path),
        )

    load_env_file(env_file)

    with config_path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                f"Config file is not valid YAML: {config_path}",
                details={"cause": str(exc)},
            ) from exc

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file must contain a mapping: {config_path}",
            value=type(data).__name__,
        )

    return parse_job_config(data)
