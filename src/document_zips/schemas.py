# src/document_zips/schemas.py

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DocumentType(str, Enum):
    CONTRACT_DOCUMENTS = "CONTRACT_DOCUMENTS"
    RATE_DOCUMENTS = "RATE_DOCUMENTS"


class DocumentReference(BaseModel):
    """
    A document to be packaged. `remote_url` may be in the legacy malformed
    shape (`s3://bucket/uuid.ext/original-filename.ext`); migrated records also
    carry an explicit bucket and key, which take precedence.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    remote_url: str = Field(..., min_length=1, alias="s3URL")
    display_name: str = Field(..., min_length=1, alias="name")
    content_hash: str | None = Field(None, alias="sha256")
    bucket_name: str | None = Field(None, alias="s3BucketName")
    object_key: str | None = Field(None, alias="s3Key")


class ZipPackageArtifact(BaseModel):
    """The persisted record of a generated zip package."""

    model_config = ConfigDict(frozen=True)

    object_url: str
    bucket_name: str
    object_key: str
    content_hash: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    document_type: DocumentType
    revision_id: str
    id: str | None = None
    created_at: datetime | None = None


class ContractRevision(BaseModel):
    """A submitted contract revision with the documents it carries."""

    model_config = ConfigDict(frozen=True)

    id: str
    state_code: str | None = None
    created_at: datetime | None = None
    contract_documents: list[DocumentReference] = Field(default_factory=list)
    supporting_documents: list[DocumentReference] = Field(default_factory=list)

    @property
    def package_documents(self) -> list[DocumentReference]:
        return [*self.contract_documents, *self.supporting_documents]


class RateRevision(BaseModel):
    """A submitted rate revision with the documents it carries."""

    model_config = ConfigDict(frozen=True)

    id: str
    state_code: str | None = None
    created_at: datetime | None = None
    rate_documents: list[DocumentReference] = Field(default_factory=list)
    supporting_documents: list[DocumentReference] = Field(default_factory=list)

    @property
    def package_documents(self) -> list[DocumentReference]:
        return [*self.rate_documents, *self.supporting_documents]


class RegenerateZipsEvent(BaseModel):
    """Payload for the targeted regeneration job."""

    model_config = ConfigDict(populate_by_name=True)

    contract_revision_id: str | None = Field(None, alias="contractRevisionID")
    rate_revision_id: str | None = Field(None, alias="rateRevisionID")
    limit: int | None = Field(None, gt=0)
    dry_run: bool = Field(False, alias="dryRun")


class RegenerateZipsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    contracts_processed: int = Field(0, alias="contractsProcessed")
    rates_processed: int = Field(0, alias="ratesProcessed")
    contracts_failed: int = Field(0, alias="contractsFailed")
    rates_failed: int = Field(0, alias="ratesFailed")
    errors: list[str] = Field(default_factory=list)
    dry_run: bool = Field(False, alias="dryRun")


class MigrateS3UrlsEvent(BaseModel):
    """Payload for the legacy object-key migration job."""

    model_config = ConfigDict(populate_by_name=True)

    limit: int | None = Field(None, gt=0)
    dry_run: bool = Field(False, alias="dryRun")


class TableMigrationResult(BaseModel):
    processed: int = 0
    failed: int = 0
