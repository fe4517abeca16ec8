# src/document_zips/core.py

"""
Core logic for building and staging document zip packages.

The main entry point, `package_and_upload`, downloads a set of documents into
an exclusively owned staging directory, writes them into a store-only zip
under their human-readable names, hashes the finished archive and uploads it.
The staging directory is removed on every exit path.
"""

import hashlib
import logging
import shutil
import tempfile
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterator, Sequence

from .clients import S3Client
from .downloader import DownloadedFile, DownloadOptions, download_all
from .exceptions import (
    ArchiveCreationError,
    EmptyDocumentSetError,
    HashingError,
)
from .s3_urls import build_s3_url, resolve_document_location
from .schemas import DocumentReference

logger = logging.getLogger(__name__)

STAGING_PREFIX = "document-zip-"
ARCHIVE_FILENAME = "output.zip"
_HASH_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True, slots=True)
class BuiltZip:
    path: Path
    content_hash: str
    size: int
    file_count: int


@dataclass(frozen=True, slots=True)
class UploadedZip:
    bucket: str
    key: str
    object_url: str
    content_hash: str


# --- Helpers ---
@contextmanager
def staging_area(prefix: str = STAGING_PREFIX) -> Iterator[Path]:
    """Creates a private temp directory and removes it however the block exits."""
    path = Path(tempfile.mkdtemp(prefix=prefix))
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(
                f"Failed to clean up staging directory: {e}",
                extra={"staging_dir": str(path)},
            )


def _unique_archive_names(names: Sequence[str]) -> list[str]:
    """
    Keeps display names readable while making every archive entry distinct:
    the second `report.pdf` becomes `report (1).pdf`.
    """
    seen: set[str] = set()
    unique: list[str] = []
    for name in names:
        candidate = name
        if candidate in seen:
            pure = PurePosixPath(name)
            stem, suffix = name[: len(name) - len(pure.suffix)], pure.suffix
            counter = 1
            while f"{stem} ({counter}){suffix}" in seen:
                counter += 1
            candidate = f"{stem} ({counter}){suffix}"
        seen.add(candidate)
        unique.append(candidate)
    return unique


def build_zip(files: Sequence[DownloadedFile], output_path: Path) -> None:
    """
    Writes *files* into a store-only zip at *output_path*, in order, each under
    its display name.
    """
    names = _unique_archive_names([f.display_name for f in files])
    try:
        with zipfile.ZipFile(output_path, mode="w", compression=zipfile.ZIP_STORED) as archive:
            for downloaded, arcname in zip(files, names):
                archive.write(downloaded.path, arcname=arcname)
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise ArchiveCreationError(str(e), context={"output_path": str(output_path)}) from e


def hash_file(path: Path) -> str:
    """Streams *path* through SHA-256 and returns the lowercase hex digest."""
    hasher = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_HASH_CHUNK_SIZE), b""):
                hasher.update(chunk)
    except OSError as e:
        raise HashingError(str(path), str(e)) from e
    return hasher.hexdigest()


# --- Core Packaging Routine ---
@contextmanager
def build_document_zip(
    s3_client: S3Client,
    documents: Sequence[DocumentReference],
    options: DownloadOptions,
) -> Iterator[BuiltZip]:
    """
    Download -> archive -> hash inside a fresh staging area.

    Yields the finished archive; it only exists until the block exits.
    """
    if not documents:
        raise EmptyDocumentSetError()

    with staging_area() as staging_dir:
        downloads_dir = staging_dir / "documents"
        downloads_dir.mkdir()
        files = download_all(s3_client, documents, downloads_dir, options)

        zip_path = staging_dir / ARCHIVE_FILENAME
        build_zip(files, zip_path)
        content_hash = hash_file(zip_path)

        logger.info(
            "Built document zip",
            extra={
                "file_count": len(files),
                "size_bytes": zip_path.stat().st_size,
                "sha256": content_hash,
            },
        )
        yield BuiltZip(
            path=zip_path,
            content_hash=content_hash,
            size=zip_path.stat().st_size,
            file_count=len(files),
        )


# --- High-Level Orchestrator ---
def package_and_upload(
    s3_client: S3Client,
    documents: Sequence[DocumentReference],
    destination_key: str,
    options: DownloadOptions,
    destination_bucket: str | None = None,
) -> UploadedZip:
    """
    Builds the zip for *documents* and uploads it to *destination_key*.

    The bucket defaults to the one holding the first document.
    """
    if not documents:
        raise EmptyDocumentSetError()
    bucket = destination_bucket or resolve_document_location(documents[0]).bucket

    with build_document_zip(s3_client, documents, options) as built:
        s3_client.upload_zip(
            bucket=bucket,
            key=destination_key,
            path=built.path,
            content_hash=built.content_hash,
        )

    logger.info(
        "Successfully staged zip",
        extra={"bucket": bucket, "key": destination_key, "hash": built.content_hash},
    )
    return UploadedZip(
        bucket=bucket,
        key=destination_key,
        object_url=build_s3_url(bucket, destination_key),
        content_hash=built.content_hash,
    )
