"""Structured exception hierarchy for datamold.

Provides specific exception types for the failure modes of generation
and transfer runs, with context for debugging and troubleshooting.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from datamold.generate.aggregate import GenerationReport
    from datamold.storage.base import ObjectInfo

__all__ = [
    "DataMoldError",
    "ConfigurationError",
    "StorageError",
    "BucketConflictError",
    "BucketNotFoundError",
    "ObjectListError",
    "TransferAbortedError",
    "GenerationSetupError",
    "GenerationError",
    "TransferError",
]


class DataMoldError(Exception):
    """Base exception for all datamold errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if details:
            parts.append("\nDetails:")
            parts.extend(f"  {k}: {v}" for k, v in details.items())

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(DataMoldError):
    """Error in job configuration.

    Raised when configuration is invalid or incomplete.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)


class StorageError(DataMoldError):
    """Error reported by a storage backend.

    Wraps the provider error so callers see which bucket and provider
    were involved. The original exception is kept on ``cause``.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        bucket: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.provider = provider
        self.bucket = bucket
        self.cause = cause

        details = kwargs.pop("details", {})
        if provider:
            details["provider"] = provider
        if bucket:
            details["bucket"] = bucket
        if cause is not None:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class BucketConflictError(StorageError):
    """Bucket exists but cannot be used (owned elsewhere, not a directory)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        suggestion = kwargs.pop("suggestion", None) or (
            "Bucket names are global on most providers. "
            "Pick another bucket name or check account ownership."
        )
        super().__init__(message, suggestion=suggestion, **kwargs)


class BucketNotFoundError(StorageError):
    """Bucket does not exist."""


class ObjectListError(StorageError):
    """Object enumeration failed part way through.

    ``objects`` holds the descriptors gathered from the pages that did
    succeed, so callers can inspect how far the listing got.
    """

    def __init__(
        self,
        message: str,
        *,
        objects: Optional[List["ObjectInfo"]] = None,
        **kwargs: Any,
    ) -> None:
        self.objects = list(objects or [])
        details = kwargs.pop("details", {})
        details["objects_listed"] = len(self.objects)
        super().__init__(message, details=details, **kwargs)


class TransferAbortedError(DataMoldError):
    """A streaming transfer was abandoned by its producer."""

    def __init__(
        self,
        message: str = "Transfer aborted by caller",
        *,
        name: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.name = name
        self.cause = cause

        details = kwargs.pop("details", {})
        if name:
            details["object"] = name
        if cause is not None:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class GenerationSetupError(DataMoldError):
    """Destination could not be prepared before any worker started."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.cause = cause

        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        if cause is not None:
            details["cause"] = str(cause)

        suggestion = kwargs.pop("suggestion", None) or (
            "Ensure the destination is a writable directory."
        )
        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class _RunError(DataMoldError):
    """Shared shape for fail-complete runs that had at least one failed unit."""

    def __init__(
        self,
        message: str,
        *,
        report: Optional["GenerationReport"] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.report = report
        self.cause = cause

        details = kwargs.pop("details", {})
        if report is not None:
            details["total"] = report.total
            details["failed"] = report.failed
            if report.failed_units:
                details["first_failed_unit"] = report.failed_units[0]
        if cause is not None:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class GenerationError(_RunError):
    """One or more generation units failed."""


class TransferError(_RunError):
    """One or more object transfers failed."""
