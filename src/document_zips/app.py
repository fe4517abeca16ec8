# src/document_zips/app.py

"""
Lambda entry points for the document zip jobs.

Three handlers share one runtime shape:
1.  `migrate_document_zips_handler` backfills zip packages for every submitted
    revision that lacks one (API Gateway event, runtime-budgeted).
2.  `regenerate_zips_handler` regenerates one revision's zip, or every missing
    one up to a limit (direct invoke).
3.  `migrate_s3_urls_handler` derives bucket/key columns from legacy `s3URL`
    values (direct invoke).

Each invocation opens its own connection pool and closes it before returning.
"""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any

import boto3
import pydantic
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext
from botocore.config import Config as BotoConfig

from .clients import S3Client
from .config import AppConfig, get_config
from .database import Database, open_pool
from .exceptions import ConfigurationError, get_error_context
from .migration import DocumentZipMigration, MigrationConfig
from .regenerate import ZipRegenerator
from .repository import ZipPackageRepository
from .s3_url_migration import S3UrlMigrator
from .schemas import MigrateS3UrlsEvent, RegenerateZipsEvent, RegenerateZipsResponse
from .service import DocumentZipService

# --- Global & Reusable Components ---
CONFIG = get_config()

logger = Logger(service=CONFIG.service_name, level=CONFIG.log_level)
tracer = Tracer(service=CONFIG.service_name)
metrics = Metrics(namespace="DocumentZips", service=CONFIG.service_name)

s3_boto_client = boto3.client(
    "s3",
    config=BotoConfig(
        connect_timeout=CONFIG.s3_operation_timeout_seconds,
        read_timeout=CONFIG.s3_read_timeout_seconds,
        retries={"max_attempts": 3, "mode": "standard"},
    ),
)
s3_client = S3Client(
    s3_client=s3_boto_client,
    kms_key_id=CONFIG.kms_key_id,
    operation_timeout_seconds=CONFIG.s3_operation_timeout_seconds,
)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Credentials": True,
}


@dataclass(frozen=True)
class Runtime:
    store: ZipPackageRepository
    service: DocumentZipService


@contextmanager
def open_runtime(config: AppConfig) -> Iterator[Runtime]:
    """Wires the repository and service for one invocation."""
    database = Database(open_pool(config))
    try:
        store = ZipPackageRepository(database)
        yield Runtime(
            store=store,
            service=DocumentZipService(s3_client, store, options=config.download_options),
        )
    finally:
        database.close()


def _error_extra(error: Exception) -> dict[str, Any]:
    details = get_error_context(error)
    if not CONFIG.enable_detailed_error_context:
        details.pop("context", None)
    return details


def _api_response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "body": json.dumps(body, default=str),
        "headers": dict(CORS_HEADERS),
    }


def _migration_budget_ms(requested_ms: int, context: LambdaContext) -> int:
    """Caps the requested budget so the job stops before Lambda kills it."""
    remaining_ms = context.get_remaining_time_in_millis() - CONFIG.timeout_guard_threshold_ms
    return max(1, min(requested_ms, remaining_ms))


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def migrate_document_zips_handler(event: dict, context: LambdaContext) -> dict[str, Any]:
    """Backfills zip packages for submitted revisions (API Gateway event)."""
    metrics.add_dimension("environment", CONFIG.environment)

    try:
        migration_config = MigrationConfig.from_query_params(
            (event or {}).get("queryStringParameters"),
            default_batch_size=CONFIG.migration_batch_size,
            default_max_runtime_ms=CONFIG.migration_max_runtime_ms,
        )
    except ConfigurationError as e:
        logger.error(f"Invalid migration request: {e}", extra=_error_extra(e))
        return _api_response(500, {"success": False, "error": f"Migration failed: {e}"})

    migration_config = replace(
        migration_config,
        max_runtime_ms=_migration_budget_ms(migration_config.max_runtime_ms, context),
    )
    logger.info("Starting document zip migration", extra={"config": migration_config.to_dict()})

    try:
        with open_runtime(CONFIG) as runtime:
            stats = DocumentZipMigration(runtime.store, runtime.service, migration_config).run()
    except Exception as e:
        metrics.add_metric(name="MigrationFailures", unit=MetricUnit.Count, value=1)
        logger.exception("Document zip migration failed", extra=_error_extra(e))
        return _api_response(500, {"success": False, "error": f"Migration failed: {e}"})

    metrics.add_metric(
        name="RevisionsProcessed",
        unit=MetricUnit.Count,
        value=stats.processed_contracts + stats.processed_rates,
    )
    metrics.add_metric(
        name="RevisionsErrored",
        unit=MetricUnit.Count,
        value=stats.errored_contracts + stats.errored_rates,
    )

    if stats.timeout_exceeded:
        message = "Migration stopped early due to timeout - run again to continue"
    else:
        message = "Migration completed successfully"
    result = {
        "success": True,
        "message": message,
        "stats": stats.to_dict(),
        "config": migration_config.to_dict(),
    }
    logger.info("Migration completed", extra={"result": result})
    return _api_response(200, result)


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def regenerate_zips_handler(event: dict, context: LambdaContext) -> dict[str, Any]:
    """Regenerates missing zip packages (direct invoke)."""
    metrics.add_dimension("environment", CONFIG.environment)

    try:
        request = RegenerateZipsEvent.model_validate(event or {})
    except pydantic.ValidationError as e:
        logger.warning("Invalid regenerate event", extra={"validation_errors": e.errors()})
        response = RegenerateZipsResponse(success=False, errors=[f"Invalid event: {e}"])
        return response.model_dump(by_alias=True)

    logger.info("Starting zip regeneration", extra=request.model_dump(by_alias=True))
    with open_runtime(CONFIG) as runtime:
        regenerator = ZipRegenerator(
            runtime.store, runtime.service, default_limit=CONFIG.regenerate_default_limit
        )
        response = regenerator.run(request)

    metrics.add_metric(
        name="ZipsRegenerated",
        unit=MetricUnit.Count,
        value=response.contracts_processed + response.rates_processed,
    )
    metrics.add_metric(
        name="ZipRegenerationFailures",
        unit=MetricUnit.Count,
        value=response.contracts_failed + response.rates_failed,
    )
    return response.model_dump(by_alias=True)


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def migrate_s3_urls_handler(event: dict, context: LambdaContext) -> dict[str, Any]:
    """Backfills bucket/key columns from legacy s3URL values (direct invoke)."""
    metrics.add_dimension("environment", CONFIG.environment)

    request = MigrateS3UrlsEvent.model_validate(event or {})
    with open_runtime(CONFIG) as runtime:
        migrator = S3UrlMigrator(runtime.store, CONFIG.documents_bucket, CONFIG.qa_bucket)
        response = migrator.run(request)

    failed = sum(table["failed"] for table in response["results"].values())
    metrics.add_metric(name="LocationBackfillFailures", unit=MetricUnit.Count, value=failed)
    return response
