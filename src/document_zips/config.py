import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .downloader import DownloadOptions
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_ALLOWED_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _positive_int(name: str, default: str) -> int:
    value = int(os.getenv(name, default))
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer.")
    return value


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    # --- Required Variables ---
    database_url: str
    service_name: str
    environment: str

    # --- Buckets and encryption (the buckets are only needed by the s3 URL migration) ---
    documents_bucket: str | None
    qa_bucket: str | None
    kms_key_id: str | None

    # --- Optional Variables with Defaults ---
    log_level: str
    connect_timeout_seconds: int
    zip_download_batch_size: int
    max_zip_size_mb: int
    download_base_timeout_ms: int
    download_timeout_per_mb_ms: int
    migration_batch_size: int
    migration_max_runtime_ms: int
    regenerate_default_limit: int
    s3_operation_timeout_seconds: int
    timeout_guard_threshold_seconds: int
    enable_detailed_error_context: bool

    # --- Derived Properties ---
    @property
    def max_zip_size_bytes(self) -> int:
        return self.max_zip_size_mb * 1_048_576

    @property
    def timeout_guard_threshold_ms(self) -> int:
        return self.timeout_guard_threshold_seconds * 1000

    @property
    def s3_read_timeout_seconds(self) -> float:
        """Socket read timeout, never longer than the base per-file deadline."""
        return min(self.s3_operation_timeout_seconds, self.download_base_timeout_ms / 1000)

    @property
    def download_options(self) -> DownloadOptions:
        return DownloadOptions(
            batch_size=self.zip_download_batch_size,
            max_total_bytes=self.max_zip_size_bytes,
            base_timeout_ms=self.download_base_timeout_ms,
            timeout_per_mb_ms=self.download_timeout_per_mb_ms,
        )

    @property
    def database_conninfo(self) -> str:
        """
        DATABASE_URL as a libpq URI with the connect timeout applied.

        Prisma-style URLs carry a `schema` query parameter that libpq rejects,
        so it is dropped here.
        """
        parts = urlsplit(self.database_url)
        query = [
            (k, v)
            for k, v in parse_qsl(parts.query)
            if k not in ("schema", "connect_timeout")
        ]
        query.append(("connect_timeout", str(self.connect_timeout_seconds)))
        return urlunsplit(parts._replace(query=urlencode(query)))

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            database_url = os.environ["DATABASE_URL"]
            service_name = os.environ["SERVICE_NAME"]
            environment = os.environ["ENVIRONMENT"]

            documents_bucket = os.getenv("DOCUMENTS_BUCKET_NAME") or None
            qa_bucket = os.getenv("QA_BUCKET_NAME") or None
            kms_key_id = os.getenv("KMS_KEY_ID") or None

            # --- Handle optional and numeric variables with validation ---
            connect_timeout_seconds = _positive_int("CONNECT_TIMEOUT_SECONDS", "60")
            zip_download_batch_size = _positive_int("ZIP_DOWNLOAD_BATCH_SIZE", "50")
            max_zip_size_mb = _positive_int("MAX_ZIP_SIZE_MB", "1536")
            download_base_timeout_ms = _positive_int("DOWNLOAD_BASE_TIMEOUT_MS", "120000")

            download_timeout_per_mb_ms = int(os.getenv("DOWNLOAD_TIMEOUT_PER_MB_MS", "1000"))
            if download_timeout_per_mb_ms < 0:
                raise ValueError(
                    "DOWNLOAD_TIMEOUT_PER_MB_MS must be a non-negative integer."
                )

            migration_batch_size = _positive_int("MIGRATION_BATCH_SIZE", "10")
            # 13 minutes, under the 15 minute Lambda ceiling.
            migration_max_runtime_ms = _positive_int("MIGRATION_MAX_RUNTIME_MS", "780000")
            regenerate_default_limit = _positive_int("REGENERATE_DEFAULT_LIMIT", "100")
            s3_operation_timeout_seconds = _positive_int("S3_OPERATION_TIMEOUT_SECONDS", "30")
            timeout_guard_threshold_seconds = _positive_int(
                "TIMEOUT_GUARD_THRESHOLD_SECONDS", "10"
            )

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            if log_level not in _ALLOWED_LOG_LEVELS:
                raise ValueError(
                    f"LOG_LEVEL must be one of {_ALLOWED_LOG_LEVELS}, not '{log_level}'"
                )

            enable_detailed_error_context = os.getenv(
                "ENABLE_DETAILED_ERROR_CONTEXT", "true"
            ).lower() in ("true", "1", "yes", "on")

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            database_url=database_url,
            service_name=service_name,
            environment=environment,
            documents_bucket=documents_bucket,
            qa_bucket=qa_bucket,
            kms_key_id=kms_key_id,
            log_level=log_level,
            connect_timeout_seconds=connect_timeout_seconds,
            zip_download_batch_size=zip_download_batch_size,
            max_zip_size_mb=max_zip_size_mb,
            download_base_timeout_ms=download_base_timeout_ms,
            download_timeout_per_mb_ms=download_timeout_per_mb_ms,
            migration_batch_size=migration_batch_size,
            migration_max_runtime_ms=migration_max_runtime_ms,
            regenerate_default_limit=regenerate_default_limit,
            s3_operation_timeout_seconds=s3_operation_timeout_seconds,
            timeout_guard_threshold_seconds=timeout_guard_threshold_seconds,
            enable_detailed_error_context=enable_detailed_error_context,
        )


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call. This avoids import-time side effects.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()
