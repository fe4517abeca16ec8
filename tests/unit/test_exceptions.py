# tests/unit/test_exceptions.py

import json

import pytest

from src.document_zips.exceptions import (
    ArchiveCreationError,
    ConfigurationError,
    DocumentZipError,
    DownloadError,
    DownloadTimeoutError,
    EmptyDocumentSetError,
    InvalidS3URLError,
    InvalidStreamError,
    NonRetryableError,
    PersistenceError,
    RetryableError,
    RevisionNotFoundError,
    S3AccessDeniedError,
    S3Error,
    S3ObjectNotFoundError,
    S3ThrottlingError,
    S3TimeoutError,
    SizeLimitExceededError,
    UploadError,
    ValidationError,
    get_error_context,
    is_retryable_error,
)


class TestDocumentZipError:
    """Test the base DocumentZipError class."""

    def test_basic_initialization(self):
        error = DocumentZipError("Test message")
        assert str(error) == "Test message"
        assert error.message == "Test message"
        assert error.error_code == "DocumentZipError"
        assert error.context == {}
        assert error.correlation_id is None

    def test_context_is_copied(self):
        context = {"key": "value"}
        error = DocumentZipError("Test message", context=context)
        context["key"] = "changed"
        assert error.context == {"key": "value"}

    def test_to_dict_is_json_serializable(self):
        error = DocumentZipError(
            "Test message", error_code="TEST", context={"a": 1}, correlation_id="corr-1"
        )
        result = error.to_dict()

        assert result == {
            "error_type": "DocumentZipError",
            "error_code": "TEST",
            "error_message": "Test message",
            "context": {"a": 1},
            "correlation_id": "corr-1",
            "retryable": False,
        }
        json.dumps(result)


class TestS3Errors:
    def test_object_not_found(self):
        error = S3ObjectNotFoundError("bkt", "allusers/a.pdf", context={"aws_error_code": "NoSuchKey"})
        assert isinstance(error, S3Error) and isinstance(error, NonRetryableError)
        assert error.message == "S3 object not found: s3://bkt/allusers/a.pdf"
        assert error.context == {"bucket": "bkt", "key": "allusers/a.pdf", "aws_error_code": "NoSuchKey"}

    def test_access_denied(self):
        error = S3AccessDeniedError("bkt", "k")
        assert error.error_code == "S3_ACCESS_DENIED"
        assert not is_retryable_error(error)

    def test_throttling_is_retryable(self):
        error = S3ThrottlingError("get_object")
        assert is_retryable_error(error)
        assert error.context == {"operation": "get_object"}

    def test_timeout_keeps_its_own_keys(self):
        error = S3TimeoutError("get_object", 30, context={"operation": "other", "bucket": "b"})
        assert error.context == {"operation": "get_object", "timeout_seconds": 30, "bucket": "b"}
        assert error.message == "S3 operation timed out after 30s: get_object"


class TestProcessingErrors:
    def test_download_error_defaults(self):
        error = DownloadError("bkt", "k", "socket closed")
        assert error.error_code == "DOWNLOAD_FAILED"
        assert error.message == "Failed to download s3://bkt/k: socket closed"
        assert is_retryable_error(error)

    def test_download_timeout(self):
        error = DownloadTimeoutError("bkt", "k", 120_000)
        assert isinstance(error, DownloadError)
        assert error.error_code == "DOWNLOAD_TIMEOUT"
        assert error.context["timeout_ms"] == 120_000

    def test_invalid_stream(self):
        error = InvalidStreamError("bkt", "k")
        assert error.error_code == "INVALID_STREAM"
        assert error.context["reason"] == "invalid stream"

    def test_size_limit_message(self):
        error = SizeLimitExceededError(2 * 1024 * 1024, 1024 * 1024)
        assert error.message == "Total size (2.00MB) exceeds maximum allowed size of 1.00MB"
        assert not is_retryable_error(error)

    @pytest.mark.parametrize(
        "error, code",
        [
            (ArchiveCreationError("disk full"), "ARCHIVE_CREATION_FAILED"),
            (UploadError("b", "k", "reset"), "UPLOAD_FAILED"),
            (PersistenceError("insert", "deadlock"), "PERSISTENCE_FAILED"),
        ],
    )
    def test_retryable_processing_errors(self, error, code):
        assert error.error_code == code
        assert is_retryable_error(error)


class TestValidationErrors:
    def test_invalid_url(self):
        error = InvalidS3URLError("s3://x", "too few parts")
        assert isinstance(error, ValidationError)
        assert error.message == "Invalid S3 URL (too few parts): s3://x"

    def test_empty_document_set(self):
        assert EmptyDocumentSetError().error_code == "EMPTY_DOCUMENT_SET"

    def test_revision_not_found(self):
        error = RevisionNotFoundError("contract", "rev-9")
        assert error.message == "Contract revision rev-9 not found or not submitted"

    def test_configuration_error(self):
        error = ConfigurationError("bad")
        assert error.error_code == "CONFIGURATION_ERROR"
        assert not is_retryable_error(error)


class TestUtilityFunctions:
    def test_get_error_context_for_app_error(self):
        error = UploadError("b", "k", "reset")
        assert get_error_context(error) == error.to_dict()

    def test_get_error_context_for_unknown_error(self):
        assert get_error_context(ValueError("nope")) == {
            "error_type": "ValueError",
            "error_message": "nope",
            "retryable": False,
        }

    def test_is_retryable_error_for_plain_exception(self):
        assert is_retryable_error(RetryableError("x"))
        assert not is_retryable_error(RuntimeError("x"))
