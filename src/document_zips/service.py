# src/document_zips/service.py

"""
Document Zip Service.

Turns the document set of a contract or rate revision into exactly one
persisted zip package. This is the error boundary of the pipeline: every
failure underneath is returned to the caller as an `Err`, never raised, so the
submit path and the migration jobs can each decide whether to retry, skip or
fail.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from .clients import S3Client
from .core import UploadedZip, package_and_upload
from .downloader import DownloadOptions
from .exceptions import DocumentZipError, ProcessingError, get_error_context
from .repository import ZipArtifactStore
from .results import Err, Ok, Result
from .schemas import (
    ContractRevision,
    DocumentReference,
    DocumentType,
    RateRevision,
    ZipPackageArtifact,
)

logger = logging.getLogger(__name__)

_DESTINATIONS = {
    DocumentType.CONTRACT_DOCUMENTS: ("contracts", "contract-documents.zip"),
    DocumentType.RATE_DOCUMENTS: ("rates", "rate-documents.zip"),
}


class ZipStatus(str, Enum):
    CREATED = "created"
    SKIPPED_NO_DOCUMENTS = "skipped_no_documents"
    SKIPPED_EXISTING = "skipped_existing"


@dataclass(frozen=True, slots=True)
class ZipGenerationOutcome:
    status: ZipStatus
    artifact: ZipPackageArtifact | None = None

    @property
    def created(self) -> bool:
        return self.status is ZipStatus.CREATED


def destination_key(document_type: DocumentType, revision_id: str) -> str:
    """Deterministic S3 key for a revision's zip package."""
    folder, filename = _DESTINATIONS[document_type]
    return f"zips/{folder}/{revision_id}/{filename}"


class DocumentZipService:
    def __init__(
        self,
        s3_client: S3Client,
        store: ZipArtifactStore,
        options: DownloadOptions = DownloadOptions(),
        destination_bucket: str | None = None,
    ):
        self._s3 = s3_client
        self._store = store
        self._options = options
        self._destination_bucket = destination_bucket

    def generate_and_store(
        self,
        documents: Sequence[DocumentReference],
        revision_id: str,
        document_type: DocumentType,
    ) -> Result[ZipGenerationOutcome]:
        """
        Package *documents* for one revision, upload the zip and record it.

        1. No documents: nothing to do.
        2. An artifact already exists for (revision, type): nothing to do.
        3. Download, archive and hash in a private staging area.
        4. Upload to the deterministic destination key.
        5. Record the artifact. If that write fails, the uploaded object is
           deleted (best-effort) and the write error is returned.
        """
        log_extra = {"revision_id": revision_id, "document_type": document_type.value}

        if not documents:
            logger.info("No documents to zip, skipping", extra=log_extra)
            return Ok(ZipGenerationOutcome(ZipStatus.SKIPPED_NO_DOCUMENTS))

        try:
            existing = self._store.find_existing_zip_artifact(revision_id, document_type)
            if existing is not None:
                logger.info(
                    "Zip package already exists, skipping",
                    extra={**log_extra, "s3_url": existing.object_url},
                )
                return Ok(ZipGenerationOutcome(ZipStatus.SKIPPED_EXISTING, existing))

            logger.info(
                f"Generating zip for {len(documents)} documents",
                extra=log_extra,
            )
            uploaded = package_and_upload(
                self._s3,
                documents,
                destination_key(document_type, revision_id),
                self._options,
                destination_bucket=self._destination_bucket,
            )

            try:
                artifact = self._store.create_zip_artifact(
                    ZipPackageArtifact(
                        object_url=uploaded.object_url,
                        bucket_name=uploaded.bucket,
                        object_key=uploaded.key,
                        content_hash=uploaded.content_hash,
                        document_type=document_type,
                        revision_id=revision_id,
                    )
                )
            except Exception:
                self._delete_orphaned_upload(uploaded)
                raise

        except DocumentZipError as e:
            logger.error(
                f"Zip generation failed for revision {revision_id}: {e}",
                extra={**log_extra, **get_error_context(e)},
            )
            return Err(e)
        except Exception as e:
            logger.exception(
                "Unexpected error generating zip",
                extra={**log_extra, "error_type": type(e).__name__},
            )
            return Err(
                ProcessingError(
                    f"Unexpected error generating zip: {e}",
                    error_code="UNEXPECTED_ZIP_ERROR",
                    context=log_extra,
                )
            )

        logger.info(
            "Successfully generated zip",
            extra={**log_extra, "s3_url": artifact.object_url, "sha256": artifact.content_hash},
        )
        return Ok(ZipGenerationOutcome(ZipStatus.CREATED, artifact))

    def _delete_orphaned_upload(self, uploaded: UploadedZip) -> None:
        """Removes an object whose database record could not be written."""
        try:
            self._s3.delete_object(uploaded.bucket, uploaded.key)
        except Exception as cleanup_error:
            logger.warning(
                f"Failed to delete orphaned zip after database error: {cleanup_error}",
                extra={"bucket": uploaded.bucket, "key": uploaded.key},
            )

    # --- Revision-level helpers ---

    def generate_contract_documents_zip(
        self, revision: ContractRevision
    ) -> Result[ZipGenerationOutcome]:
        return self.generate_and_store(
            revision.package_documents, revision.id, DocumentType.CONTRACT_DOCUMENTS
        )

    def generate_rate_documents_zip(self, revision: RateRevision) -> Result[ZipGenerationOutcome]:
        return self.generate_and_store(
            revision.package_documents, revision.id, DocumentType.RATE_DOCUMENTS
        )

    def create_contract_zips(self, revision: ContractRevision | None) -> Err | None:
        """
        Zip step of a contract submission. A failure is returned with the
        revision in its message; the submission itself carries on.
        """
        if revision is None:
            return None
        if not revision.contract_documents:
            logger.info(
                f"No contract documents found for revision {revision.id}, skipping zip generation"
            )
            return None

        result = self.generate_contract_documents_zip(revision)
        if isinstance(result, Err):
            logger.warning(
                f"Contract document zip generation failed for revision {revision.id}, "
                "but continuing with submission process"
            )
            return Err(_with_revision_context(result.error, "Contract", revision.id))
        return None

    def create_rate_zips(self, revisions: Sequence[RateRevision]) -> list[Err]:
        """Zip step for each rate revision of a submission; collects failures."""
        errors: list[Err] = []
        for revision in revisions:
            if not revision.package_documents:
                logger.info(
                    f"No rate documents found for rate revision {revision.id}, skipping zip generation"
                )
                continue

            result = self.generate_rate_documents_zip(revision)
            if isinstance(result, Err):
                errors.append(Err(_with_revision_context(result.error, "Rate", revision.id)))
                logger.warning(
                    f"Rate document zip generation failed for revision {revision.id}, "
                    "but continuing with other revisions"
                )
        return errors


def _with_revision_context(error: DocumentZipError, kind: str, revision_id: str) -> DocumentZipError:
    wrapped = ProcessingError(
        f"{kind} document zip generation failed for revision {revision_id}: {error.message}",
        error_code=error.error_code,
        context={**error.context, "revision_id": revision_id},
    )
    wrapped.__cause__ = error
    return wrapped
