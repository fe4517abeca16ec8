# src/document_zips/s3_urls.py

"""
Parsing helpers for object-storage URLs.

Two URL families exist in the stored data:

- Well-formed URLs, `s3://bucket/key...` or the virtual-hosted
  `https://bucket.s3[.region].amazonaws.com/key...`. Zip packages have always
  been written this way, under a `zips/` prefix.
- Legacy document URLs, `s3://bucket/<uuid.ext>/<original filename>`. The
  filename was appended to the object key when the record was written; the
  real object lives at `allusers/<uuid.ext>`.

Everything here is pure and raises `InvalidS3URLError` on bad input.
"""

import re
from typing import NamedTuple
from urllib.parse import urlsplit

from .exceptions import InvalidS3URLError
from .schemas import DocumentReference

LEGACY_KEY_PREFIX = "allusers/"
ZIP_KEY_PREFIX = "zips/"

_VIRTUAL_HOST = re.compile(r"^(?P<bucket>.+)\.s3([.-][a-z0-9-]+)?\.amazonaws\.com$")


class S3Location(NamedTuple):
    bucket: str
    key: str


def build_s3_url(bucket: str, key: str) -> str:
    return f"s3://{bucket}/{key}"


def _split_s3_scheme(url: str) -> list[str]:
    # "s3://bucket/a/b" -> ["s3:", "", "bucket", "a", "b"]
    parts = url.split("/")
    if len(parts) < 4 or parts[1] != "":
        raise InvalidS3URLError(url, "too few parts")
    if not parts[2]:
        raise InvalidS3URLError(url, "missing bucket")
    return parts


def parse_bucket_and_key(url: str) -> S3Location:
    """Extracts the bucket and full object key from a well-formed URL."""
    if url.startswith("s3://"):
        parts = _split_s3_scheme(url)
        key = "/".join(parts[3:])
        if not key:
            raise InvalidS3URLError(url, "missing key")
        return S3Location(parts[2], key)

    if url.startswith("https://"):
        split = urlsplit(url)
        match = _VIRTUAL_HOST.match(split.hostname or "")
        if match is None:
            raise InvalidS3URLError(url, "unsupported host")
        key = split.path[1:]
        if not key:
            raise InvalidS3URLError(url, "missing key")
        return S3Location(match.group("bucket"), key)

    raise InvalidS3URLError(url, "unsupported scheme")


def extract_legacy_key(url: str) -> str:
    """
    Returns `allusers/<uuid.ext>` for a legacy document URL.

    Only the segment directly after the bucket is kept; the trailing
    filename is ignored even when it contains further slashes.
    """
    if not url.startswith("s3://"):
        raise InvalidS3URLError(url, "unsupported scheme")
    parts = _split_s3_scheme(url)
    uuid_with_extension = parts[3]
    if not uuid_with_extension:
        raise InvalidS3URLError(url, "could not extract object id")
    return f"{LEGACY_KEY_PREFIX}{uuid_with_extension}"


def extract_zip_key(url: str) -> str:
    """Returns the key of a zip package URL, which must live under `zips/`."""
    key = parse_bucket_and_key(url).key
    if not key.startswith(ZIP_KEY_PREFIX):
        raise InvalidS3URLError(url, f"expected key starting with '{ZIP_KEY_PREFIX}'")
    return key


def resolve_document_location(document: DocumentReference) -> S3Location:
    """Where the bytes for *document* actually live in S3."""
    if document.bucket_name and document.object_key:
        return S3Location(document.bucket_name, document.object_key)
    bucket = parse_bucket_and_key(document.remote_url).bucket
    return S3Location(bucket, extract_legacy_key(document.remote_url))
