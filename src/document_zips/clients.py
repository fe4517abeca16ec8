# src/document_zips/clients.py

"""
Client wrapper for interacting with S3.

This class provides a clean, abstracted interface over the raw boto3 client,
making the pipeline logic easier to read, test, and maintain. botocore errors
are translated into the exception hierarchy in `exceptions.py` here, so no
other module needs to know about boto3 error codes.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO, cast

from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from .exceptions import (
    DownloadError,
    DocumentZipError,
    S3AccessDeniedError,
    S3ObjectNotFoundError,
    S3ThrottlingError,
    S3TimeoutError,
    UploadError,
)

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client as S3ClientType

logger = logging.getLogger(__name__)

_THROTTLING_CODES = {"Throttling", "ThrottlingException", "RequestLimitExceeded", "SlowDown"}
_TIMEOUT_CODES = {"RequestTimeout", "RequestTimeoutException"}
_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}

ZIP_CONTENT_TYPE = "application/zip"


@dataclass(frozen=True, slots=True)
class S3ObjectStream:
    """An open object body together with the size S3 reported for it."""

    body: BinaryIO | None
    content_length: int


def _translate_client_error(
    e: ClientError,
    operation: str,
    bucket: str,
    key: str,
    fallback: type[DocumentZipError],
    extra_context: dict[str, Any] | None = None,
) -> DocumentZipError:
    """Maps a botocore ClientError onto our exception hierarchy."""
    error_code = e.response.get("Error", {}).get("Code", "Unknown")
    error_message = e.response.get("Error", {}).get("Message", str(e))
    context = {
        "aws_error_code": error_code,
        "aws_error_message": error_message,
        **(extra_context or {}),
    }

    if error_code in _NOT_FOUND_CODES:
        return S3ObjectNotFoundError(bucket=bucket, key=key, context=context)
    if error_code == "AccessDenied":
        return S3AccessDeniedError(bucket=bucket, key=key, context=context)
    if error_code in _THROTTLING_CODES:
        return S3ThrottlingError(
            operation, context={"bucket": bucket, "key": key, **context}
        )
    if error_code in _TIMEOUT_CODES:
        return S3TimeoutError(
            operation, timeout_seconds=0, context={"bucket": bucket, "key": key, **context}
        )
    return fallback(bucket, key, f"S3 client error: {error_message}", context=context)


class S3Client:
    """
    A wrapper for S3 client operations, focused on streaming data.
    """

    def __init__(
        self,
        s3_client: "S3ClientType",
        kms_key_id: str | None = None,
        operation_timeout_seconds: float = 30,
    ):
        """
        Initializes the S3Client.

        Args:
            s3_client: A typed boto3 S3 client.
            kms_key_id: Optional KMS key ID for server-side encryption.
            operation_timeout_seconds: Reported on timeout errors; the actual
                socket timeouts are configured on the boto3 client.
        """
        self._client = s3_client
        self._kms_key_id = kms_key_id
        self._operation_timeout_seconds = operation_timeout_seconds
        if self._kms_key_id:
            logger.debug(
                "S3Client initialized with SSE-KMS enabled.",
                extra={"kms_key_id": self._kms_key_id},
            )

    def get_object_stream(self, bucket: str, key: str) -> S3ObjectStream:
        """
        Retrieves an S3 object's body as a file-like streaming object.
        Raises specific S3 exceptions based on the error type.
        """
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            raise _translate_client_error(e, "get_object", bucket, key, DownloadError) from e
        except ReadTimeoutError as e:
            raise S3TimeoutError(
                "get_object",
                timeout_seconds=self._operation_timeout_seconds,
                context={"bucket": bucket, "key": key, "timeout_error": str(e)},
            ) from e
        except EndpointConnectionError as e:
            raise S3TimeoutError(
                "get_object",
                timeout_seconds=self._operation_timeout_seconds,
                context={"bucket": bucket, "key": key, "connection_error": str(e)},
            ) from e

        return S3ObjectStream(
            body=cast(BinaryIO | None, response.get("Body")),
            content_length=int(response.get("ContentLength") or 0),
        )

    def upload_zip(self, bucket: str, key: str, path: Path, content_hash: str) -> None:
        """Uploads a zip file from local disk via a managed, streaming upload."""
        extra_args: dict[str, Any] = {
            "Metadata": {"content-sha256": content_hash},
            "ContentType": ZIP_CONTENT_TYPE,
        }
        if self._kms_key_id:
            extra_args.update(
                {"ServerSideEncryption": "aws:kms", "SSEKMSKeyId": self._kms_key_id}
            )
        logger.info(
            "Uploading zip",
            extra={"bucket": bucket, "key": key, "kms_enabled": bool(self._kms_key_id)},
        )

        try:
            with open(path, "rb") as file_obj:
                self._client.upload_fileobj(
                    Fileobj=file_obj, Bucket=bucket, Key=key, ExtraArgs=extra_args
                )
            logger.debug(
                "Upload (PUT) completed successfully",
                extra={"bucket": bucket, "key": key},
            )
        except ClientError as e:
            raise _translate_client_error(
                e, "upload_zip", bucket, key, UploadError, {"content_hash": content_hash}
            ) from e
        except (ReadTimeoutError, EndpointConnectionError) as e:
            raise S3TimeoutError(
                "upload_zip",
                timeout_seconds=self._operation_timeout_seconds,
                context={"bucket": bucket, "key": key, "content_hash": content_hash, "error": str(e)},
            ) from e
        except OSError as e:
            raise UploadError(bucket, key, f"could not read archive: {e}") from e

    def delete_object(self, bucket: str, key: str) -> None:
        """Deletes an object. Callers treat failures as best-effort."""
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
            logger.info("Deleted S3 object", extra={"bucket": bucket, "key": key})
        except ClientError as e:
            raise _translate_client_error(e, "delete_object", bucket, key, UploadError) from e
