# src/document_zips/s3_url_migration.py

"""
Backfill of explicit bucket/key columns from legacy `s3URL` values.

Older rows only carry `s3://bucket/<uuid.ext>/<filename>`, which is not the
object's real key. Each document table is walked for rows without a bucket
name; the real key is derived from the URL and written alongside the target
bucket. Contract and rate documents (and zip packages) live in the documents
bucket, question and response documents in the QA bucket.
"""

import logging
from typing import Any, Callable

from .exceptions import ConfigurationError, DocumentZipError
from .repository import ZipArtifactStore
from .s3_urls import extract_legacy_key, extract_zip_key
from .schemas import MigrateS3UrlsEvent, TableMigrationResult

logger = logging.getLogger(__name__)

PROGRESS_LOG_INTERVAL = 100

# (table, response field, uses QA bucket)
DOCUMENT_TABLE_PLAN = (
    ("ContractDocument", "contractDocuments", False),
    ("ContractSupportingDocument", "contractSupportingDocuments", False),
    ("RateDocument", "rateDocuments", False),
    ("RateSupportingDocument", "rateSupportingDocuments", False),
    ("ContractQuestionDocument", "contractQuestionDocuments", True),
    ("ContractQuestionResponseDocument", "contractQuestionResponseDocuments", True),
    ("RateQuestionDocument", "rateQuestionDocuments", True),
    ("RateQuestionResponseDocument", "rateQuestionResponseDocuments", True),
)
ZIP_PACKAGE_TABLE = "DocumentZipPackage"
ZIP_PACKAGE_FIELD = "documentZipPackages"


class S3UrlMigrator:
    def __init__(self, store: ZipArtifactStore, documents_bucket: str | None, qa_bucket: str | None):
        if not documents_bucket:
            raise ConfigurationError("DOCUMENTS_BUCKET_NAME environment variable is required")
        if not qa_bucket:
            raise ConfigurationError("QA_BUCKET_NAME environment variable is required")
        self._store = store
        self._documents_bucket = documents_bucket
        self._qa_bucket = qa_bucket

    def run(self, event: MigrateS3UrlsEvent) -> dict[str, Any]:
        logger.info(
            "Starting s3URL migration",
            extra={
                "dry_run": event.dry_run,
                "limit": event.limit,
                "documents_bucket": self._documents_bucket,
                "qa_bucket": self._qa_bucket,
            },
        )

        results = {field: TableMigrationResult() for _, field, _ in DOCUMENT_TABLE_PLAN}
        results[ZIP_PACKAGE_FIELD] = TableMigrationResult()
        response: dict[str, Any] = {
            "success": True,
            "dryRun": event.dry_run,
            "documentsBucket": self._documents_bucket,
            "qaBucket": self._qa_bucket,
            "results": results,
            "errors": [],
        }

        try:
            for table, field, uses_qa_bucket in DOCUMENT_TABLE_PLAN:
                logger.info(f"Migrating {table}...")
                bucket = self._qa_bucket if uses_qa_bucket else self._documents_bucket
                rows = self._store.find_documents_missing_location(table, limit=event.limit)
                results[field] = self._migrate_rows(
                    table,
                    rows,
                    bucket,
                    extract_legacy_key,
                    lambda row_id, key, t=table, b=bucket: self._store.update_document_location(
                        t, row_id, b, key
                    ),
                    event.dry_run,
                )
                if results[field].failed:
                    response["errors"].append(f"{table}: {results[field].failed} failures")

            logger.info(f"Migrating {ZIP_PACKAGE_TABLE}...")
            rows = self._store.find_zip_packages_missing_location(limit=event.limit)
            results[ZIP_PACKAGE_FIELD] = self._migrate_rows(
                ZIP_PACKAGE_TABLE,
                rows,
                self._documents_bucket,
                extract_zip_key,
                lambda row_id, key: self._store.update_zip_package_location(
                    row_id, self._documents_bucket, key
                ),
                event.dry_run,
            )
            if results[ZIP_PACKAGE_FIELD].failed:
                response["errors"].append(
                    f"{ZIP_PACKAGE_TABLE}: {results[ZIP_PACKAGE_FIELD].failed} failures"
                )
        except Exception as e:
            logger.error(f"Migration failed: {e}")
            response["success"] = False
            response["errors"].append(str(e))

        response["results"] = {field: result.model_dump() for field, result in results.items()}
        logger.info("Migration complete", extra={"migration": response})
        return response

    @staticmethod
    def _migrate_rows(
        table: str,
        rows: list[dict[str, Any]],
        bucket: str,
        derive_key: Callable[[str], str],
        write_location: Callable[[str, str], None],
        dry_run: bool,
    ) -> TableMigrationResult:
        """Derives and writes the location of each row; a bad row never stops the table."""
        result = TableMigrationResult()
        logger.info(f"Found {len(rows)} rows to migrate in {table}")

        for row in rows:
            row_id = row["id"]
            try:
                key = derive_key(row["s3URL"])
                if dry_run:
                    logger.info(
                        f'[DRY RUN] Would update {table} {row_id}: s3BucketName="{bucket}", s3Key="{key}"'
                    )
                else:
                    write_location(row_id, key)
            except DocumentZipError as e:
                logger.error(f"Failed to migrate {table} {row_id}: {e}")
                result.failed += 1
                continue

            result.processed += 1
            if result.processed % PROGRESS_LOG_INTERVAL == 0:
                logger.info(f"Progress: {result.processed}/{len(rows)} rows migrated in {table}")

        logger.info(f"{table} migration complete", extra=result.model_dump())
        return result
