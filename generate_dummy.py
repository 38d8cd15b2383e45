"""CLI entrypoint for datamold.

This file wires together:

- Job config loading and validation
- Dummy data generation (local directory or object storage)
- Bucket lifecycle and listing
- Upload, download and bucket-to-bucket migration

Examples:
    datamold generate --dest ./dummy --format txt=1 --format csv=2
    datamold generate --config job.yaml --to-storage
    datamold create-bucket --config job.yaml
    datamold put ./dummy --config job.yaml
    datamold migrate --config job.yaml
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Dict, List, Optional

from datamold import __version__
from datamold.config import GenerateConfig, JobConfig, StorageConfig, load_job_config
from datamold.controller import TransferController
from datamold.errors import ConfigurationError, DataMoldError
from datamold.generate import generate_dataset, list_encoders
from datamold.logging import get_transfer_logger, setup_logging
from datamold.storage import get_storage

logger = logging.getLogger(__name__)


def _parse_formats(values: List[str]) -> Dict[str, int]:
    sizes: Dict[str, int] = {}
    for value in values:
        name, sep, capacity = value.partition("=")
        if not sep:
            raise ConfigurationError(
                f"Invalid --format '{value}'; expected NAME=CAPACITY (e.g. csv=2)",
                field="format",
                value=value,
            )
        try:
            sizes[name.strip().lower()] = int(capacity)
        except ValueError as e:
            raise ConfigurationError(
                f"Capacity for '{name}' must be an integer", field="format", value=value
            ) from e
    return sizes


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="datamold",
        description="Generate dummy datasets and move them between object stores",
    )
    parser.add_argument("--config", help="Path to YAML job config")
    parser.add_argument("--env-file", help="Optional .env file loaded before the config")
    parser.add_argument(
        "--threads", type=int, default=None, help="Worker count (default: 10)"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable DEBUG logging"
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--version", action="version", version=f"datamold {__version__}"
    )
    parser.add_argument(
        "--list-formats", action="store_true", help="List generator formats and exit"
    )

    sub = parser.add_subparsers(dest="command")

    gen = sub.add_parser("generate", help="Generate dummy data")
    gen.add_argument("--dest", help="Destination directory for local generation")
    gen.add_argument(
        "--format",
        action="append",
        default=[],
        metavar="NAME=CAPACITY",
        help="Format and capacity in GB (repeatable), e.g. csv=2",
    )
    gen.add_argument("--unit-bytes", type=int, help="Override the size of each artifact")
    gen.add_argument("--seed", type=int, help="Seed for reproducible content")
    gen.add_argument(
        "--to-storage",
        action="store_true",
        help="Write into the configured storage bucket instead of a directory",
    )

    sub.add_parser("create-bucket", help="Create the configured bucket")
    sub.add_parser("delete-bucket", help="Empty and delete the configured bucket")
    sub.add_parser("list", help="List objects in the configured bucket as JSON lines")

    put = sub.add_parser("put", help="Upload a directory into the bucket")
    put.add_argument("source", help="Local directory to upload")

    get = sub.add_parser("get", help="Download the bucket into a directory")
    get.add_argument("dest", help="Local directory to download into")

    sub.add_parser("migrate", help="Copy every object from storage to target")

    return parser


class JobRunner:
    """Runs one CLI command against a loaded job config."""

    def __init__(self, args: argparse.Namespace, job: JobConfig) -> None:
        self.args = args
        self.job = job
        self.threads = args.threads or job.threads

    def _storage_config(self, section: str = "storage") -> StorageConfig:
        config = getattr(self.job, section)
        if config is None:
            raise ConfigurationError(
                f"'{section}' section is required for this command", field=section
            )
        return config

    def _controller(self, section: str = "storage") -> TransferController:
        config = self._storage_config(section)
        transfer_logger = get_transfer_logger(
            "datamold.transfer", provider=config.provider.value, bucket=config.bucket
        )
        return TransferController(
            get_storage(config), threads=self.threads, logger=transfer_logger
        )

    def run(self) -> int:
        command = self.args.command
        if command == "generate":
            return self._generate()
        if command == "create-bucket":
            self._controller().create_bucket()
        elif command == "delete-bucket":
            self._controller().delete_bucket()
        elif command == "list":
            for obj in self._controller().object_list():
                print(json.dumps(obj.to_dict()))
        elif command == "put":
            self._controller().put(self.args.source)
        elif command == "get":
            self._controller().get(self.args.dest)
        elif command == "migrate":
            source = self._controller("storage")
            target = self._controller("target")
            target.create_bucket()
            source.copy_to(target)
        return 0

    def _generate(self) -> int:
        base = self.job.generate or GenerateConfig()
        updates: Dict[str, object] = {}
        if self.args.dest:
            updates["destination"] = self.args.dest
        if self.args.format:
            updates["sizes"] = _parse_formats(self.args.format)
        if self.args.unit_bytes is not None:
            updates["unit_bytes"] = self.args.unit_bytes
        if self.args.seed is not None:
            updates["seed"] = self.args.seed
        if self.threads:
            updates["threads"] = self.threads
        config = base.with_overrides(**updates)

        if not config.sizes:
            raise ConfigurationError(
                "Nothing to generate; pass --format NAME=CAPACITY or set generate.sizes",
                field="generate.sizes",
            )

        storage = None
        if self.args.to_storage:
            controller = self._controller()
            controller.create_bucket()
            storage = controller

        reports = generate_dataset(config, storage=storage)
        for fmt, report in reports.items():
            logger.info("%s: %s", fmt, report.to_dict())
        return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_formats:
        print("Available formats:")
        for name in list_encoders():
            print(f"  - {name}")
        return 0

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(verbose=args.verbose, json_format=args.json_logs, log_file=args.log_file)

    try:
        job = (
            load_job_config(args.config, env_file=args.env_file)
            if args.config
            else JobConfig()
        )
        return JobRunner(args, job).run()
    except DataMoldError as e:
        logger.error("%s", e)
        return 1
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
