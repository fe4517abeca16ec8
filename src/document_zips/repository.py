# src/document_zips/repository.py

"""
Persistence for zip package artifacts and the revision history they attach to.

The tables are owned by the main application's schema; this module only reads
revisions and documents and writes `DocumentZipPackage` rows (plus the
bucket/key backfill used by the legacy URL migration).
"""

import logging
import uuid
from typing import Any, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from .database import Database
from .exceptions import PersistenceError
from .schemas import (
    ContractRevision,
    DocumentReference,
    DocumentType,
    RateRevision,
    ZipPackageArtifact,
)

logger = logging.getLogger(__name__)

# Document tables and the revision column each one hangs off.
CONTRACT_DOCUMENT_TABLES = {
    "ContractDocument": "contractRevisionID",
    "ContractSupportingDocument": "contractRevisionID",
}
RATE_DOCUMENT_TABLES = {
    "RateDocument": "rateRevisionID",
    "RateSupportingDocument": "rateRevisionID",
}
QUESTION_DOCUMENT_TABLES = (
    "ContractQuestionDocument",
    "ContractQuestionResponseDocument",
    "RateQuestionDocument",
    "RateQuestionResponseDocument",
)
MIGRATABLE_DOCUMENT_TABLES = (
    *CONTRACT_DOCUMENT_TABLES,
    *RATE_DOCUMENT_TABLES,
    *QUESTION_DOCUMENT_TABLES,
)

_REVISION_COLUMN = {
    DocumentType.CONTRACT_DOCUMENTS: "contractRevisionID",
    DocumentType.RATE_DOCUMENTS: "rateRevisionID",
}


class ZipArtifactStore(Protocol):
    """What the service and the migration drivers need from persistence."""

    def find_existing_zip_artifact(
        self, revision_id: str, document_type: DocumentType
    ) -> ZipPackageArtifact | None: ...

    def create_zip_artifact(self, artifact: ZipPackageArtifact) -> ZipPackageArtifact: ...

    def find_contract_revisions_without_zips(
        self,
        state_code: str | None = None,
        require_documents: bool = False,
        limit: int | None = None,
    ) -> list[ContractRevision]: ...

    def find_rate_revisions_without_zips(
        self,
        state_code: str | None = None,
        require_documents: bool = False,
        limit: int | None = None,
    ) -> list[RateRevision]: ...

    def find_submitted_contract_revision(self, revision_id: str) -> ContractRevision | None: ...

    def find_submitted_rate_revision(self, revision_id: str) -> RateRevision | None: ...

    def find_documents_missing_location(
        self, table: str, limit: int | None = None
    ) -> list[dict[str, Any]]: ...

    def update_document_location(self, table: str, row_id: str, bucket: str, key: str) -> None: ...

    def find_zip_packages_missing_location(self, limit: int | None = None) -> list[dict[str, Any]]: ...

    def update_zip_package_location(self, row_id: str, bucket: str, key: str) -> None: ...


def _to_artifact(row: dict[str, Any]) -> ZipPackageArtifact:
    document_type = DocumentType(row["documentType"])
    return ZipPackageArtifact(
        id=row["id"],
        object_url=row["s3URL"],
        bucket_name=row["s3BucketName"],
        object_key=row["s3Key"],
        content_hash=row["sha256"],
        document_type=document_type,
        revision_id=row[_REVISION_COLUMN[document_type]],
        created_at=row.get("createdAt"),
    )


def _to_document(row: dict[str, Any]) -> DocumentReference:
    return DocumentReference(
        remote_url=row["s3URL"],
        display_name=row["name"],
        content_hash=row.get("sha256"),
        bucket_name=row.get("s3BucketName"),
        object_key=row.get("s3Key"),
    )


class ZipPackageRepository:
    """Postgres implementation of `ZipArtifactStore`."""

    def __init__(self, database: Database):
        self._db = database

    # --- Zip packages ---

    def find_existing_zip_artifact(
        self, revision_id: str, document_type: DocumentType
    ) -> ZipPackageArtifact | None:
        query = sql.SQL(
            """
            SELECT *
            FROM "DocumentZipPackage"
            WHERE {column} = %s AND "documentType" = %s
            ORDER BY "createdAt" DESC
            LIMIT 1
            """
        ).format(column=sql.Identifier(_REVISION_COLUMN[document_type]))
        try:
            with self._db.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, (revision_id, document_type.value))
                    row = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(
                "find_existing_zip_artifact", str(e), context={"revision_id": revision_id}
            ) from e
        return _to_artifact(row) if row else None

    def create_zip_artifact(self, artifact: ZipPackageArtifact) -> ZipPackageArtifact:
        """Insert a DocumentZipPackage row.

        Raises:
            PersistenceError: if the insert fails; the transaction is rolled back.
        """
        revision_column = _REVISION_COLUMN[artifact.document_type]
        query = sql.SQL(
            """
            INSERT INTO "DocumentZipPackage"
                ("id", "s3URL", "sha256", "s3BucketName", "s3Key",
                 "documentType", {column}, "createdAt", "updatedAt")
            VALUES (%s, %s, %s, %s, %s, %s, %s, NOW(), NOW())
            RETURNING *
            """
        ).format(column=sql.Identifier(revision_column))
        params = (
            str(uuid.uuid4()),
            artifact.object_url,
            artifact.content_hash,
            artifact.bucket_name,
            artifact.object_key,
            artifact.document_type.value,
            artifact.revision_id,
        )
        try:
            with self._db.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(
                "create_zip_artifact",
                str(e),
                context={"revision_id": artifact.revision_id, "s3_url": artifact.object_url},
            ) from e
        if row is None:
            raise PersistenceError("create_zip_artifact", "insert returned no row")
        return _to_artifact(row)

    # --- Revisions ---

    def _find_revisions(
        self,
        revision_table: str,
        parent_table: str,
        parent_column: str,
        document_tables: dict[str, str],
        zip_column: str,
        revision_id: str | None,
        state_code: str | None,
        require_documents: bool,
        limit: int | None,
    ) -> list[tuple[dict[str, Any], dict[str, list[DocumentReference]]]]:
        conditions = [sql.SQL('r."submitInfoID" IS NOT NULL')]
        params: list[Any] = []

        if revision_id is not None:
            conditions.append(sql.SQL('r."id" = %s'))
            params.append(revision_id)
        else:
            conditions.append(
                sql.SQL(
                    'NOT EXISTS (SELECT 1 FROM "DocumentZipPackage" z WHERE z.{zip_column} = r."id")'
                ).format(zip_column=sql.Identifier(zip_column))
            )
        if state_code:
            conditions.append(sql.SQL('p."stateCode" = %s'))
            params.append(state_code)
        if require_documents:
            conditions.append(
                sql.SQL("({})").format(
                    sql.SQL(" OR ").join(
                        sql.SQL("EXISTS (SELECT 1 FROM {table} d WHERE d.{column} = r.\"id\")").format(
                            table=sql.Identifier(table), column=sql.Identifier(column)
                        )
                        for table, column in document_tables.items()
                    )
                )
            )

        query = sql.SQL(
            """
            SELECT r."id", r."createdAt", p."stateCode"
            FROM {revision_table} r
            JOIN {parent_table} p ON p."id" = r.{parent_column}
            WHERE {conditions}
            ORDER BY r."createdAt" ASC, r."id" ASC
            """
        ).format(
            revision_table=sql.Identifier(revision_table),
            parent_table=sql.Identifier(parent_table),
            parent_column=sql.Identifier(parent_column),
            conditions=sql.SQL(" AND ").join(conditions),
        )
        if limit is not None:
            query = query + sql.SQL(" LIMIT %s")
            params.append(limit)

        try:
            with self._db.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    revisions = cur.fetchall()
                    ids = [row["id"] for row in revisions]

                    documents: dict[str, dict[str, list[DocumentReference]]] = {
                        rid: {table: [] for table in document_tables} for rid in ids
                    }
                    if ids:
                        for table, column in document_tables.items():
                            cur.execute(
                                sql.SQL(
                                    """
                                    SELECT *
                                    FROM {table}
                                    WHERE {column} = ANY(%s)
                                    ORDER BY "createdAt" ASC, "id" ASC
                                    """
                                ).format(
                                    table=sql.Identifier(table), column=sql.Identifier(column)
                                ),
                                (ids,),
                            )
                            for row in cur.fetchall():
                                documents[row[column]][table].append(_to_document(row))
        except psycopg.Error as e:
            raise PersistenceError(f"find {revision_table}", str(e)) from e

        return [(row, documents[row["id"]]) for row in revisions]

    def _contract_revisions(self, **kwargs: Any) -> list[ContractRevision]:
        found = self._find_revisions(
            revision_table="ContractRevisionTable",
            parent_table="ContractTable",
            parent_column="contractID",
            document_tables=CONTRACT_DOCUMENT_TABLES,
            zip_column="contractRevisionID",
            **kwargs,
        )
        return [
            ContractRevision(
                id=row["id"],
                state_code=row["stateCode"],
                created_at=row["createdAt"],
                contract_documents=docs["ContractDocument"],
                supporting_documents=docs["ContractSupportingDocument"],
            )
            for row, docs in found
        ]

    def _rate_revisions(self, **kwargs: Any) -> list[RateRevision]:
        found = self._find_revisions(
            revision_table="RateRevisionTable",
            parent_table="RateTable",
            parent_column="rateID",
            document_tables=RATE_DOCUMENT_TABLES,
            zip_column="rateRevisionID",
            **kwargs,
        )
        return [
            RateRevision(
                id=row["id"],
                state_code=row["stateCode"],
                created_at=row["createdAt"],
                rate_documents=docs["RateDocument"],
                supporting_documents=docs["RateSupportingDocument"],
            )
            for row, docs in found
        ]

    def find_contract_revisions_without_zips(
        self,
        state_code: str | None = None,
        require_documents: bool = False,
        limit: int | None = None,
    ) -> list[ContractRevision]:
        return self._contract_revisions(
            revision_id=None,
            state_code=state_code,
            require_documents=require_documents,
            limit=limit,
        )

    def find_rate_revisions_without_zips(
        self,
        state_code: str | None = None,
        require_documents: bool = False,
        limit: int | None = None,
    ) -> list[RateRevision]:
        return self._rate_revisions(
            revision_id=None,
            state_code=state_code,
            require_documents=require_documents,
            limit=limit,
        )

    def find_submitted_contract_revision(self, revision_id: str) -> ContractRevision | None:
        found = self._contract_revisions(
            revision_id=revision_id, state_code=None, require_documents=False, limit=1
        )
        return found[0] if found else None

    def find_submitted_rate_revision(self, revision_id: str) -> RateRevision | None:
        found = self._rate_revisions(
            revision_id=revision_id, state_code=None, require_documents=False, limit=1
        )
        return found[0] if found else None

    # --- Legacy location backfill ---

    def find_documents_missing_location(
        self, table: str, limit: int | None = None
    ) -> list[dict[str, Any]]:
        if table not in MIGRATABLE_DOCUMENT_TABLES:
            raise ValueError(f"Unknown document table: {table}")
        query = sql.SQL(
            'SELECT "id", "s3URL", "name" FROM {table} WHERE "s3BucketName" IS NULL ORDER BY "id"'
        ).format(table=sql.Identifier(table))
        return self._fetch_all(query, limit, f"find {table}")

    def update_document_location(self, table: str, row_id: str, bucket: str, key: str) -> None:
        if table not in MIGRATABLE_DOCUMENT_TABLES:
            raise ValueError(f"Unknown document table: {table}")
        self._update_location(sql.Identifier(table), row_id, bucket, key)

    def find_zip_packages_missing_location(self, limit: int | None = None) -> list[dict[str, Any]]:
        query = sql.SQL(
            'SELECT "id", "s3URL" FROM "DocumentZipPackage" WHERE "s3BucketName" IS NULL ORDER BY "id"'
        )
        return self._fetch_all(query, limit, "find DocumentZipPackage")

    def update_zip_package_location(self, row_id: str, bucket: str, key: str) -> None:
        self._update_location(sql.Identifier("DocumentZipPackage"), row_id, bucket, key)

    def _fetch_all(
        self, query: sql.Composable, limit: int | None, operation: str
    ) -> list[dict[str, Any]]:
        params: list[Any] = []
        if limit is not None:
            query = query + sql.SQL(" LIMIT %s")
            params.append(limit)
        try:
            with self._db.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    return cur.fetchall()
        except psycopg.Error as e:
            raise PersistenceError(operation, str(e)) from e

    def _update_location(self, table: sql.Identifier, row_id: str, bucket: str, key: str) -> None:
        query = sql.SQL(
            'UPDATE {table} SET "s3BucketName" = %s, "s3Key" = %s WHERE "id" = %s'
        ).format(table=table)
        try:
            with self._db.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (bucket, key, row_id))
        except psycopg.Error as e:
            raise PersistenceError("update location", str(e), context={"id": row_id}) from e
