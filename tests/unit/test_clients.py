# tests/unit/test_clients.py

"""
Unit tests for the S3Client wrapper in src/document_zips/clients.py.

These tests ensure that the wrapper passes the expected arguments to the
underlying boto3 client and translates botocore failures into the pipeline's
exception hierarchy.
"""

import io
from unittest.mock import ANY, MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from src.document_zips.clients import S3Client
from src.document_zips.exceptions import (
    DownloadError,
    S3AccessDeniedError,
    S3ObjectNotFoundError,
    S3ThrottlingError,
    S3TimeoutError,
    UploadError,
)


def _client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, operation)


# -----------------------------------------------------------------------------
# Fixtures for setting up clients with mock dependencies
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_boto_s3_client() -> MagicMock:
    """Yields a MagicMock for the boto3 S3 client."""
    return MagicMock()


@pytest.fixture
def s3_client(mock_boto_s3_client: MagicMock) -> S3Client:
    """Yields an instance of our S3Client wrapper without KMS."""
    return S3Client(s3_client=mock_boto_s3_client, operation_timeout_seconds=12)


@pytest.fixture
def s3_client_with_kms(mock_boto_s3_client: MagicMock) -> S3Client:
    """Yields an instance of our S3Client wrapper with KMS enabled."""
    return S3Client(s3_client=mock_boto_s3_client, kms_key_id="test-kms-key")


# -----------------------------------------------------------------------------
# get_object_stream
# -----------------------------------------------------------------------------


def test_get_object_stream_returns_body_and_length(s3_client, mock_boto_s3_client):
    # Arrange
    body = io.BytesIO(b"data")
    mock_boto_s3_client.get_object.return_value = {"Body": body, "ContentLength": 4}

    # Act
    stream = s3_client.get_object_stream("test-bucket", "test-key")

    # Assert
    mock_boto_s3_client.get_object.assert_called_once_with(Bucket="test-bucket", Key="test-key")
    assert stream.body is body
    assert stream.content_length == 4


def test_get_object_stream_tolerates_missing_length(s3_client, mock_boto_s3_client):
    mock_boto_s3_client.get_object.return_value = {"Body": io.BytesIO(b"")}

    assert s3_client.get_object_stream("b", "k").content_length == 0


@pytest.mark.parametrize(
    "code, expected",
    [
        ("NoSuchKey", S3ObjectNotFoundError),
        ("404", S3ObjectNotFoundError),
        ("AccessDenied", S3AccessDeniedError),
        ("SlowDown", S3ThrottlingError),
        ("RequestTimeout", S3TimeoutError),
        ("InternalError", DownloadError),
    ],
)
def test_get_object_stream_translates_client_errors(s3_client, mock_boto_s3_client, code, expected):
    mock_boto_s3_client.get_object.side_effect = _client_error(code)

    with pytest.raises(expected) as exc_info:
        s3_client.get_object_stream("b", "k")

    assert exc_info.value.context["aws_error_code"] == code


@pytest.mark.parametrize(
    "error",
    [
        ReadTimeoutError(endpoint_url="https://s3.amazonaws.com"),
        EndpointConnectionError(endpoint_url="https://s3.amazonaws.com"),
    ],
)
def test_get_object_stream_maps_network_errors_to_timeout(s3_client, mock_boto_s3_client, error):
    mock_boto_s3_client.get_object.side_effect = error

    with pytest.raises(S3TimeoutError) as exc_info:
        s3_client.get_object_stream("b", "k")

    assert exc_info.value.context["timeout_seconds"] == 12


# -----------------------------------------------------------------------------
# upload_zip / delete_object
# -----------------------------------------------------------------------------


def test_upload_zip_without_kms(s3_client, mock_boto_s3_client, tmp_path):
    # Arrange
    archive = tmp_path / "output.zip"
    archive.write_bytes(b"PK")

    # Act
    s3_client.upload_zip("dest", "zips/contracts/r/contract-documents.zip", archive, "f" * 64)

    # Assert
    mock_boto_s3_client.upload_fileobj.assert_called_once_with(
        Fileobj=ANY,
        Bucket="dest",
        Key="zips/contracts/r/contract-documents.zip",
        ExtraArgs={"Metadata": {"content-sha256": "f" * 64}, "ContentType": "application/zip"},
    )


def test_upload_zip_with_kms(s3_client_with_kms, mock_boto_s3_client, tmp_path):
    archive = tmp_path / "output.zip"
    archive.write_bytes(b"PK")

    s3_client_with_kms.upload_zip("dest", "key.zip", archive, "f" * 64)

    extra_args = mock_boto_s3_client.upload_fileobj.call_args.kwargs["ExtraArgs"]
    assert extra_args["ServerSideEncryption"] == "aws:kms"
    assert extra_args["SSEKMSKeyId"] == "test-kms-key"


def test_upload_zip_translates_client_errors(s3_client, mock_boto_s3_client, tmp_path):
    archive = tmp_path / "output.zip"
    archive.write_bytes(b"PK")
    mock_boto_s3_client.upload_fileobj.side_effect = _client_error("InternalError", "PutObject")

    with pytest.raises(UploadError) as exc_info:
        s3_client.upload_zip("dest", "key.zip", archive, "f" * 64)

    assert exc_info.value.context["content_hash"] == "f" * 64


def test_upload_zip_missing_archive_raises_upload_error(s3_client, tmp_path):
    with pytest.raises(UploadError):
        s3_client.upload_zip("dest", "key.zip", tmp_path / "missing.zip", "f" * 64)


def test_delete_object(s3_client, mock_boto_s3_client):
    s3_client.delete_object("dest", "key.zip")

    mock_boto_s3_client.delete_object.assert_called_once_with(Bucket="dest", Key="key.zip")


def test_delete_object_translates_errors(s3_client, mock_boto_s3_client):
    mock_boto_s3_client.delete_object.side_effect = _client_error("AccessDenied", "DeleteObject")

    with pytest.raises(S3AccessDeniedError):
        s3_client.delete_object("dest", "key.zip")
