# src/document_zips/downloader.py

"""
Batched, size-bounded download of documents into a staging directory.

Documents are fetched in sequential batches; the transfers inside one batch run
concurrently on a thread pool. Every transfer owns an abort signal and its own
deadline, so a slow object only ever cancels itself. The running byte total is
checked as each transfer completes and the whole call fails fast once the
ceiling is crossed, before any archive work starts.

The deadline is checked between chunks. A read blocked inside botocore can
overrun it by up to the client's read timeout, which `AppConfig` caps at the
base per-file timeout.
"""

import logging
import math
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed, wait
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from .clients import S3Client
from .exceptions import (
    DocumentZipError,
    DownloadError,
    DownloadTimeoutError,
    InvalidStreamError,
    SizeLimitExceededError,
)
from .s3_urls import S3Location, resolve_document_location
from .schemas import DocumentReference

logger = logging.getLogger(__name__)

# Maximum total size for document zip packages (1.5GB)
MAX_ZIP_SIZE_BYTES = 1536 * 1024 * 1024
_CHUNK_SIZE = 64 * 1024

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class DownloadOptions:
    batch_size: int = 50
    max_total_bytes: int = MAX_ZIP_SIZE_BYTES
    base_timeout_ms: int = 120_000
    timeout_per_mb_ms: int = 1_000

    def timeout_ms_for(self, size_bytes: int) -> int:
        size_mb = size_bytes / (1024 * 1024)
        return self.base_timeout_ms + math.ceil(self.timeout_per_mb_ms * size_mb)


@dataclass(frozen=True, slots=True)
class DownloadedFile:
    path: Path
    size: int
    display_name: str


def _download_one(
    s3_client: S3Client,
    location: S3Location,
    display_name: str,
    staging_dir: Path,
    options: DownloadOptions,
    abort: threading.Event,
    clock: Clock,
) -> DownloadedFile:
    """
    Streams one object to a uniquely named file in *staging_dir*.

    A partially written file is removed before any error leaves this function.
    """
    bucket, key = location
    started = clock()
    path = staging_dir / uuid.uuid4().hex

    try:
        stream = s3_client.get_object_stream(bucket, key)
        if stream.body is None or not hasattr(stream.body, "read"):
            raise InvalidStreamError(bucket, key)

        timeout_ms = options.timeout_ms_for(stream.content_length)
        deadline = started + timeout_ms / 1000

        written = 0
        with closing(stream.body), open(path, "wb") as out:
            for chunk in iter(lambda: stream.body.read(_CHUNK_SIZE), b""):
                if abort.is_set():
                    raise DownloadError(bucket, key, "aborted", error_code="DOWNLOAD_ABORTED")
                if clock() > deadline:
                    raise DownloadTimeoutError(bucket, key, timeout_ms)
                out.write(chunk)
                written += len(chunk)

    except DocumentZipError:
        path.unlink(missing_ok=True)
        raise
    except Exception as e:
        path.unlink(missing_ok=True)
        raise DownloadError(bucket, key, str(e)) from e

    logger.debug(
        "Downloaded document",
        extra={"bucket": bucket, "key": key, "size": written, "display_name": display_name},
    )
    return DownloadedFile(path=path, size=written, display_name=display_name)


def download_all(
    s3_client: S3Client,
    documents: Sequence[DocumentReference],
    staging_dir: Path,
    options: DownloadOptions = DownloadOptions(),
    clock: Clock = time.monotonic,
) -> list[DownloadedFile]:
    """
    Downloads every document into *staging_dir* and returns them in the
    caller's order.

    Raises:
        InvalidS3URLError: a document URL cannot be resolved (nothing is fetched).
        DownloadError: any single transfer failed, timed out or returned no stream.
        SizeLimitExceededError: the downloaded bytes exceed `options.max_total_bytes`.
    """
    # Resolve every location up front so a malformed URL fails before any I/O.
    locations = [resolve_document_location(doc) for doc in documents]
    if not locations:
        return []

    results: list[DownloadedFile | None] = [None] * len(locations)
    batch_size = max(1, options.batch_size)
    batch_count = math.ceil(len(locations) / batch_size)
    total_bytes = 0

    with ThreadPoolExecutor(
        max_workers=min(batch_size, len(locations)),
        thread_name_prefix="zip-download",
    ) as executor:
        for batch_number, start in enumerate(range(0, len(locations), batch_size), start=1):
            logger.info(f"Processing batch {batch_number}/{batch_count}")

            in_flight: dict[Future[DownloadedFile], tuple[int, threading.Event]] = {}
            for index in range(start, min(start + batch_size, len(locations))):
                abort = threading.Event()
                future = executor.submit(
                    _download_one,
                    s3_client,
                    locations[index],
                    documents[index].display_name,
                    staging_dir,
                    options,
                    abort,
                    clock,
                )
                in_flight[future] = (index, abort)

            try:
                for future in as_completed(in_flight):
                    index, _ = in_flight[future]
                    downloaded = future.result()
                    results[index] = downloaded

                    total_bytes += downloaded.size
                    if total_bytes > options.max_total_bytes:
                        raise SizeLimitExceededError(total_bytes, options.max_total_bytes)
            except BaseException:
                # Stop the siblings and let them remove their partial files.
                for future, (_, abort) in in_flight.items():
                    abort.set()
                    future.cancel()
                wait(in_flight)
                raise

    logger.info(
        "Downloaded all documents",
        extra={"document_count": len(locations), "total_bytes": total_bytes},
    )
    return [downloaded for downloaded in results if downloaded is not None]
