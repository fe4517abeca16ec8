# src/document_zips/regenerate.py

"""
Targeted regeneration of missing zip packages.

Either one explicit revision (contract or rate) is regenerated, or the store is
scanned for submitted revisions that have documents but no zip package and
each of those is regenerated, up to `limit` per revision kind.
"""

import logging

from .exceptions import DocumentZipError, ProcessingError, RevisionNotFoundError
from .repository import ZipArtifactStore
from .results import Err, Ok, Result
from .schemas import RegenerateZipsEvent, RegenerateZipsResponse
from .service import DocumentZipService

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100


class ZipRegenerator:
    def __init__(
        self,
        store: ZipArtifactStore,
        service: DocumentZipService,
        default_limit: int = DEFAULT_LIMIT,
    ):
        self._store = store
        self._service = service
        self._default_limit = default_limit

    def run(self, event: RegenerateZipsEvent) -> RegenerateZipsResponse:
        limit = event.limit or self._default_limit
        response = RegenerateZipsResponse(dry_run=event.dry_run)

        try:
            if event.contract_revision_id:
                logger.info(
                    f"Regenerating zip for contract revision: {event.contract_revision_id}"
                )
                result = self.regenerate_contract_zip(event.contract_revision_id, event.dry_run)
                self._tally(response, "contract", result)
                return response

            if event.rate_revision_id:
                logger.info(f"Regenerating zip for rate revision: {event.rate_revision_id}")
                result = self.regenerate_rate_zip(event.rate_revision_id, event.dry_run)
                self._tally(response, "rate", result)
                return response

            logger.info("Finding contract revisions missing zips...")
            contract_revisions = self._store.find_contract_revisions_without_zips(
                require_documents=True, limit=limit
            )
            logger.info(f"Found {len(contract_revisions)} contract revisions missing zips")
            if event.dry_run:
                logger.info(
                    "[DRY RUN] Would regenerate zips for these contract revisions",
                    extra={"revision_ids": [r.id for r in contract_revisions]},
                )
                response.contracts_processed += len(contract_revisions)
            else:
                for contract_revision in contract_revisions:
                    result = self._to_result(
                        self._service.generate_contract_documents_zip(contract_revision),
                        contract_revision.id,
                    )
                    self._tally(response, "contract", result)

            logger.info("Finding rate revisions missing zips...")
            rate_revisions = self._store.find_rate_revisions_without_zips(
                require_documents=True, limit=limit
            )
            logger.info(f"Found {len(rate_revisions)} rate revisions missing zips")
            if event.dry_run:
                logger.info(
                    "[DRY RUN] Would regenerate zips for these rate revisions",
                    extra={"revision_ids": [r.id for r in rate_revisions]},
                )
                response.rates_processed += len(rate_revisions)
            else:
                for rate_revision in rate_revisions:
                    result = self._to_result(
                        self._service.generate_rate_documents_zip(rate_revision),
                        rate_revision.id,
                    )
                    self._tally(response, "rate", result)

        except Exception as e:
            logger.error(f"Zip regeneration failed: {e}")
            response.success = False
            response.errors.append(str(e))
            return response

        logger.info("Zip regeneration complete", extra=response.model_dump(by_alias=True))
        return response

    def regenerate_contract_zip(self, revision_id: str, dry_run: bool) -> Result[None]:
        if dry_run:
            logger.info(f"[DRY RUN] Would regenerate zip for contract revision {revision_id}")
            return Ok(None)

        try:
            revision = self._store.find_submitted_contract_revision(revision_id)
        except DocumentZipError as e:
            return Err(e)
        if revision is None:
            return Err(RevisionNotFoundError("contract", revision_id))
        if not revision.package_documents:
            logger.info(f"Contract revision {revision_id} has no documents, skipping")
            return Ok(None)

        logger.info(f"Regenerating zip for contract revision {revision_id}...")
        return self._to_result(self._service.generate_contract_documents_zip(revision), revision_id)

    def regenerate_rate_zip(self, revision_id: str, dry_run: bool) -> Result[None]:
        if dry_run:
            logger.info(f"[DRY RUN] Would regenerate zip for rate revision {revision_id}")
            return Ok(None)

        try:
            revision = self._store.find_submitted_rate_revision(revision_id)
        except DocumentZipError as e:
            return Err(e)
        if revision is None:
            return Err(RevisionNotFoundError("rate", revision_id))
        if not revision.package_documents:
            logger.info(f"Rate revision {revision_id} has no documents, skipping")
            return Ok(None)

        logger.info(f"Regenerating zip for rate revision {revision_id}...")
        return self._to_result(self._service.generate_rate_documents_zip(revision), revision_id)

    @staticmethod
    def _to_result(result: Result, revision_id: str) -> Result[None]:
        if isinstance(result, Err):
            wrapped = ProcessingError(
                f"Failed to generate zip for {revision_id}: {result.message}",
                error_code=result.error.error_code,
                context={**result.error.context, "revision_id": revision_id},
            )
            wrapped.__cause__ = result.error
            return Err(wrapped)
        logger.info(f"Successfully generated zip for revision {revision_id}")
        return Ok(None)

    @staticmethod
    def _tally(response: RegenerateZipsResponse, kind: str, result: Result[None]) -> None:
        if isinstance(result, Ok):
            if kind == "contract":
                response.contracts_processed += 1
            else:
                response.rates_processed += 1
            return

        if kind == "contract":
            response.contracts_failed += 1
        else:
            response.rates_failed += 1
        response.errors.append(result.message)
