# src/document_zips/exceptions.py

"""
Shared custom exceptions for the document zip packaging pipeline.

Centralizing exception definitions in a separate module prevents circular
import errors between other modules that need to raise or catch them.

Exception Hierarchy:
- DocumentZipError (base)
  - RetryableError (can be retried)
    - S3ThrottlingError
    - S3TimeoutError
    - DownloadError
      - DownloadTimeoutError
      - InvalidStreamError
    - ArchiveCreationError
    - HashingError
    - UploadError
    - PersistenceError
  - NonRetryableError (should not be retried)
    - ValidationError
      - InvalidS3URLError
      - EmptyDocumentSetError
    - SizeLimitExceededError
    - S3AccessDeniedError
    - S3ObjectNotFoundError
    - RevisionNotFoundError
    - ConfigurationError
"""

from typing import Any, Dict, Optional


class DocumentZipError(Exception):
    """Base exception for all document zip pipeline errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}  # Copy context to prevent mutation
        self.correlation_id = correlation_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "error_message": self.message,
            "context": self.context,
            "correlation_id": self.correlation_id,
            "retryable": isinstance(self, RetryableError),
        }


class RetryableError(DocumentZipError):
    """Base class for errors that can be retried."""
    pass


class NonRetryableError(DocumentZipError):
    """Base class for errors that should not be retried."""
    pass


# === S3-Related Errors ===


class S3Error(DocumentZipError):
    """Base class for S3-related errors."""
    pass


class S3ObjectNotFoundError(S3Error, NonRetryableError):
    """Raised when a requested S3 object does not exist."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"S3 object not found: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="S3_OBJECT_NOT_FOUND", context=context, **kwargs)


class S3AccessDeniedError(S3Error, NonRetryableError):
    """Raised when access is denied to an S3 object."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"Access denied to S3 object: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="S3_ACCESS_DENIED", context=context, **kwargs)


class S3ThrottlingError(S3Error, RetryableError):
    """Raised when S3 operations are being throttled."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation throttled: {operation}"
        context = {"operation": operation}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="S3_THROTTLING", context=context, **kwargs)


class S3TimeoutError(S3Error, RetryableError):
    """Raised when S3 operations timeout."""

    def __init__(self, operation: str, timeout_seconds: float, **kwargs):
        message = f"S3 operation timed out after {timeout_seconds}s: {operation}"
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context") or {})
        # Our own keys win over caller-supplied ones.
        context.update({"operation": operation, "timeout_seconds": timeout_seconds})
        super().__init__(message, error_code="S3_TIMEOUT", context=context, **kwargs)


# === Validation Errors ===


class ValidationError(NonRetryableError):
    """Base class for validation errors."""
    pass


class InvalidS3URLError(ValidationError):
    """Raised when an object-storage URL cannot be parsed."""

    def __init__(self, url: str, reason: str, **kwargs):
        message = f"Invalid S3 URL ({reason}): {url}"
        context = {"url": url, "reason": reason}
        super().__init__(message, error_code="INVALID_S3_URL", context=context, **kwargs)


class EmptyDocumentSetError(ValidationError):
    """Raised when a zip is requested for an empty set of documents."""

    def __init__(self, **kwargs):
        super().__init__(
            "No documents provided for zip generation",
            error_code="EMPTY_DOCUMENT_SET",
            **kwargs,
        )


# === Processing Errors ===


class ProcessingError(DocumentZipError):
    """Base class for processing errors."""
    pass


class DownloadError(ProcessingError, RetryableError):
    """Raised when a single document download fails."""

    def __init__(self, bucket: str, key: str, reason: str, **kwargs):
        message = f"Failed to download s3://{bucket}/{key}: {reason}"
        context = {"bucket": bucket, "key": key, "reason": reason}
        context.update(kwargs.pop("context", None) or {})
        kwargs.setdefault("error_code", "DOWNLOAD_FAILED")
        super().__init__(message, context=context, **kwargs)


class DownloadTimeoutError(DownloadError):
    """Raised when a single download exceeds its per-file timeout."""

    def __init__(self, bucket: str, key: str, timeout_ms: int, **kwargs):
        super().__init__(
            bucket,
            key,
            f"download timeout after {timeout_ms}ms",
            error_code="DOWNLOAD_TIMEOUT",
            context={"timeout_ms": timeout_ms},
            **kwargs,
        )


class InvalidStreamError(DownloadError):
    """Raised when S3 returns no readable body for an object."""

    def __init__(self, bucket: str, key: str, **kwargs):
        super().__init__(bucket, key, "invalid stream", error_code="INVALID_STREAM", **kwargs)


class SizeLimitExceededError(ProcessingError, NonRetryableError):
    """Raised when the downloaded documents exceed the aggregate size ceiling."""

    def __init__(self, total_bytes: int, limit_bytes: int, **kwargs):
        total_mb = total_bytes / (1024 * 1024)
        limit_mb = limit_bytes / (1024 * 1024)
        message = (
            f"Total size ({total_mb:.2f}MB) exceeds maximum allowed size of {limit_mb:.2f}MB"
        )
        context = {"total_bytes": total_bytes, "limit_bytes": limit_bytes}
        super().__init__(message, error_code="SIZE_LIMIT_EXCEEDED", context=context, **kwargs)


class ArchiveCreationError(ProcessingError, RetryableError):
    """Raised when the zip archive cannot be written."""

    def __init__(self, reason: str, **kwargs):
        message = f"Failed to create zip archive: {reason}"
        context = {"reason": reason}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="ARCHIVE_CREATION_FAILED", context=context, **kwargs)


class HashingError(ProcessingError, RetryableError):
    """Raised when the finished archive cannot be read for hashing."""

    def __init__(self, path: str, reason: str, **kwargs):
        message = f"Failed to read file for hashing: {reason}"
        context = {"path": path, "reason": reason}
        super().__init__(message, error_code="HASHING_FAILED", context=context, **kwargs)


class UploadError(ProcessingError, RetryableError):
    """Raised when the archive upload to S3 fails."""

    def __init__(self, bucket: str, key: str, reason: str, **kwargs):
        message = f"Failed to upload zip to S3: {reason}"
        context = {"bucket": bucket, "key": key, "reason": reason}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="UPLOAD_FAILED", context=context, **kwargs)


# === Persistence Errors ===


class PersistenceError(RetryableError):
    """Raised when a database read or write fails."""

    def __init__(self, operation: str, reason: str, **kwargs):
        message = f"Database error during {operation}: {reason}"
        context = {"operation": operation, "reason": reason}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, error_code="PERSISTENCE_FAILED", context=context, **kwargs)


class RevisionNotFoundError(NonRetryableError):
    """Raised when a revision does not exist or has not been submitted."""

    def __init__(self, revision_kind: str, revision_id: str, **kwargs):
        message = f"{revision_kind.capitalize()} revision {revision_id} not found or not submitted"
        context = {"revision_kind": revision_kind, "revision_id": revision_id}
        super().__init__(message, error_code="REVISION_NOT_FOUND", context=context, **kwargs)


# === Configuration Errors ===


class ConfigurationError(NonRetryableError):
    """Raised when there's an error in the application configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


# === Utility Functions ===


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: Exception) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, DocumentZipError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "error_message": str(error),
            "retryable": False,  # Unknown errors default to non-retryable
        }
