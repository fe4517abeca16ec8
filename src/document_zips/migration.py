# src/document_zips/migration.py

"""
Forward migration: create zip packages for every submitted revision that
does not have one yet.

The job runs inside a Lambda with a hard invocation limit, so it walks the
revisions under a wall-clock budget checked before every batch and every
item. When the budget runs out it stops and reports `timeoutExceeded`; the
next invocation picks up where this one stopped because already-zipped
revisions are no longer selected and the service skips existing artifacts.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Literal, Mapping, Sequence, TypeVar

from .exceptions import ConfigurationError, get_error_context, is_retryable_error
from .repository import ZipArtifactStore
from .results import Err
from .schemas import ContractRevision, RateRevision
from .service import DocumentZipService

logger = logging.getLogger(__name__)

ItemOutcome = Literal["processed", "skipped", "errored"]
RevisionT = TypeVar("RevisionT", ContractRevision, RateRevision)

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_RUNTIME_MS = 13 * 60 * 1000


@dataclass(frozen=True, slots=True)
class MigrationConfig:
    dry_run: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    state_code: str | None = None
    max_runtime_ms: int = DEFAULT_MAX_RUNTIME_MS

    @classmethod
    def from_query_params(
        cls,
        params: Mapping[str, str | None] | None,
        default_batch_size: int = DEFAULT_BATCH_SIZE,
        default_max_runtime_ms: int = DEFAULT_MAX_RUNTIME_MS,
    ) -> "MigrationConfig":
        """Builds the config from API Gateway query string parameters."""
        params = params or {}
        try:
            batch_size = int(params.get("batchSize") or default_batch_size)
            max_runtime_ms = int(params.get("maxRuntimeMs") or default_max_runtime_ms)
        except ValueError as e:
            raise ConfigurationError(f"Invalid migration query parameter: {e}") from e
        if batch_size <= 0 or max_runtime_ms <= 0:
            raise ConfigurationError("batchSize and maxRuntimeMs must be positive integers.")

        return cls(
            dry_run=params.get("dryRun") == "true",
            batch_size=batch_size,
            state_code=params.get("stateCode") or None,
            max_runtime_ms=max_runtime_ms,
        )

    def to_dict(self) -> dict:
        return {
            "dryRun": self.dry_run,
            "batchSize": self.batch_size,
            "stateCode": self.state_code,
            "maxRuntimeMs": self.max_runtime_ms,
        }


@dataclass(slots=True)
class MigrationRunState:
    processed_contracts: int = 0
    processed_rates: int = 0
    skipped_contracts: int = 0
    skipped_rates: int = 0
    errored_contracts: int = 0
    errored_rates: int = 0
    timeout_exceeded: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def record(self, kind: Literal["contract", "rate"], outcome: ItemOutcome) -> None:
        name = f"{outcome}_{kind}s"
        setattr(self, name, getattr(self, name) + 1)

    def to_dict(self) -> dict:
        return {
            "processedContracts": self.processed_contracts,
            "processedRates": self.processed_rates,
            "skippedContracts": self.skipped_contracts,
            "skippedRates": self.skipped_rates,
            "erroredContracts": self.errored_contracts,
            "erroredRates": self.errored_rates,
            "timeoutExceeded": self.timeout_exceeded,
            "startedAt": self.started_at.isoformat(),
        }


def _log_failure(kind: str, revision_id: str, result: Err) -> None:
    # Failed revisions stay unzipped, so the next run selects them again.
    if is_retryable_error(result.error):
        logger.warning(
            f"Transient error processing {kind} {revision_id}; next run will retry: "
            f"{result.message}",
            extra={"revision_id": revision_id, **get_error_context(result.error)},
        )
    else:
        logger.error(
            f"Error processing {kind} {revision_id}: {result.message}",
            extra={"revision_id": revision_id, **get_error_context(result.error)},
        )


class DocumentZipMigration:
    def __init__(
        self,
        store: ZipArtifactStore,
        service: DocumentZipService,
        config: MigrationConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._service = service
        self._config = config
        self._clock = clock
        self._deadline = 0.0

    def run(self) -> MigrationRunState:
        stats = MigrationRunState()
        self._deadline = self._clock() + self._config.max_runtime_ms / 1000

        contract_revisions = self._store.find_contract_revisions_without_zips(
            state_code=self._config.state_code
        )
        rate_revisions = self._store.find_rate_revisions_without_zips(
            state_code=self._config.state_code
        )
        logger.info(
            f"Found {len(contract_revisions)} contract revisions and "
            f"{len(rate_revisions)} rate revisions to process"
        )

        logger.info("Processing contract revisions...")
        finished = self._walk("contract", contract_revisions, self._process_contract, stats)
        if finished:
            logger.info("Processing rate revisions...")
            self._walk("rate", rate_revisions, self._process_rate, stats)

        logger.info("Migration run finished", extra={"stats": stats.to_dict()})
        return stats

    def _out_of_time(self) -> bool:
        return self._clock() >= self._deadline

    def _walk(
        self,
        kind: Literal["contract", "rate"],
        revisions: Sequence[RevisionT],
        process: Callable[[RevisionT], ItemOutcome],
        stats: MigrationRunState,
    ) -> bool:
        """Processes *revisions* in batches. Returns False if the budget ran out."""
        batch_size = self._config.batch_size
        batch_count = math.ceil(len(revisions) / batch_size)

        for batch_number, start in enumerate(range(0, len(revisions), batch_size), start=1):
            if self._out_of_time():
                return self._stop(kind, stats)
            logger.info(f"Processing {kind} batch {batch_number}/{batch_count}")

            for revision in revisions[start : start + batch_size]:
                if self._out_of_time():
                    return self._stop(kind, stats)
                try:
                    outcome = process(revision)
                except Exception as e:
                    outcome = "errored"
                    logger.error(
                        f"Error processing {kind} {revision.id}: {e}",
                        extra=get_error_context(e),
                    )
                stats.record(kind, outcome)
        return True

    def _stop(self, kind: str, stats: MigrationRunState) -> bool:
        stats.timeout_exceeded = True
        logger.warning(
            f"Runtime budget of {self._config.max_runtime_ms}ms exhausted while processing "
            f"{kind} revisions; stopping early"
        )
        return False

    def _process_contract(self, revision: ContractRevision) -> ItemOutcome:
        documents = revision.package_documents
        if not documents:
            logger.info(f"Skipping contract {revision.id} - no documents")
            return "skipped"

        logger.info(f"Contract {revision.id} ({revision.state_code}): {len(documents)} documents")
        if self._config.dry_run:
            logger.info("[DRY RUN] Would create zip for contract documents")
            return "processed"

        result = self._service.generate_contract_documents_zip(revision)
        if isinstance(result, Err):
            _log_failure("contract", revision.id, result)
            return "errored"
        return "processed" if result.value.created else "skipped"

    def _process_rate(self, revision: RateRevision) -> ItemOutcome:
        documents = revision.package_documents
        if not documents:
            logger.info(f"Skipping rate {revision.id} - no documents")
            return "skipped"

        logger.info(f"Rate {revision.id} ({revision.state_code}): {len(documents)} documents")
        if self._config.dry_run:
            logger.info("[DRY RUN] Would create zip for rate documents")
            return "processed"

        result = self._service.generate_rate_documents_zip(revision)
        if isinstance(result, Err):
            _log_failure("rate", revision.id, result)
            return "errored"
        return "processed" if result.value.created else "skipped"
