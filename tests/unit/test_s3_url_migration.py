# tests/unit/test_s3_url_migration.py

from unittest.mock import MagicMock, call

import pytest

from src.document_zips.exceptions import ConfigurationError, PersistenceError
from src.document_zips.s3_url_migration import S3UrlMigrator
from src.document_zips.schemas import MigrateS3UrlsEvent

ALL_RESULT_FIELDS = {
    "contractDocuments",
    "contractSupportingDocuments",
    "rateDocuments",
    "rateSupportingDocuments",
    "contractQuestionDocuments",
    "contractQuestionResponseDocuments",
    "rateQuestionDocuments",
    "rateQuestionResponseDocuments",
    "documentZipPackages",
}


@pytest.fixture
def mock_store() -> MagicMock:
    store = MagicMock()
    store.find_documents_missing_location.return_value = []
    store.find_zip_packages_missing_location.return_value = []
    return store


@pytest.fixture
def migrator(mock_store) -> S3UrlMigrator:
    return S3UrlMigrator(mock_store, "docs-bucket", "qa-bucket")


def _rows_for(table_rows: dict[str, list[dict]]):
    return lambda table, limit=None: table_rows.get(table, [])


def test_requires_both_buckets(mock_store):
    with pytest.raises(ConfigurationError):
        S3UrlMigrator(mock_store, None, "qa-bucket")
    with pytest.raises(ConfigurationError):
        S3UrlMigrator(mock_store, "docs-bucket", "")


def test_document_rows_get_legacy_key_and_table_bucket(migrator, mock_store):
    # ARRANGE
    mock_store.find_documents_missing_location.side_effect = _rows_for(
        {
            "ContractDocument": [{"id": "cd-1", "s3URL": "s3://old/u1.pdf/Contract.pdf", "name": "Contract.pdf"}],
            "RateQuestionDocument": [{"id": "rq-1", "s3URL": "s3://old/u2.xlsx/Q.xlsx", "name": "Q.xlsx"}],
        }
    )

    # ACT
    response = migrator.run(MigrateS3UrlsEvent())

    # ASSERT
    mock_store.update_document_location.assert_has_calls(
        [
            call("ContractDocument", "cd-1", "docs-bucket", "allusers/u1.pdf"),
            call("RateQuestionDocument", "rq-1", "qa-bucket", "allusers/u2.xlsx"),
        ]
    )
    assert response["success"] is True
    assert set(response["results"]) == ALL_RESULT_FIELDS
    assert response["results"]["contractDocuments"] == {"processed": 1, "failed": 0}
    assert response["results"]["rateQuestionDocuments"] == {"processed": 1, "failed": 0}
    assert response["errors"] == []


def test_zip_rows_keep_their_full_key(migrator, mock_store):
    mock_store.find_zip_packages_missing_location.return_value = [
        {"id": "z-1", "s3URL": "s3://docs-bucket/zips/contracts/rev-1/contract-documents.zip"}
    ]

    response = migrator.run(MigrateS3UrlsEvent())

    mock_store.update_zip_package_location.assert_called_once_with(
        "z-1", "docs-bucket", "zips/contracts/rev-1/contract-documents.zip"
    )
    assert response["results"]["documentZipPackages"] == {"processed": 1, "failed": 0}


def test_bad_rows_are_counted_and_do_not_stop_the_table(migrator, mock_store):
    # ARRANGE: one malformed URL and one database failure among three rows
    mock_store.find_documents_missing_location.side_effect = _rows_for(
        {
            "RateDocument": [
                {"id": "r-1", "s3URL": "s3://old", "name": "bad.pdf"},
                {"id": "r-2", "s3URL": "s3://old/u2.pdf/ok.pdf", "name": "ok.pdf"},
                {"id": "r-3", "s3URL": "s3://old/u3.pdf/ok.pdf", "name": "ok.pdf"},
            ]
        }
    )
    mock_store.update_document_location.side_effect = [
        PersistenceError("update location", "lock timeout"),
        None,
    ]

    # ACT
    response = migrator.run(MigrateS3UrlsEvent())

    # ASSERT
    assert response["success"] is True
    assert response["results"]["rateDocuments"] == {"processed": 1, "failed": 2}
    assert response["errors"] == ["RateDocument: 2 failures"]


def test_dry_run_writes_nothing(migrator, mock_store):
    mock_store.find_documents_missing_location.side_effect = _rows_for(
        {"ContractSupportingDocument": [{"id": "s-1", "s3URL": "s3://old/u.pdf/s.pdf", "name": "s.pdf"}]}
    )

    response = migrator.run(MigrateS3UrlsEvent(dryRun=True, limit=50))

    assert response["dryRun"] is True
    assert response["results"]["contractSupportingDocuments"] == {"processed": 1, "failed": 0}
    mock_store.update_document_location.assert_not_called()
    mock_store.find_zip_packages_missing_location.assert_called_once_with(limit=50)


def test_lookup_failure_marks_run_unsuccessful(migrator, mock_store):
    mock_store.find_documents_missing_location.side_effect = PersistenceError(
        "find ContractDocument", "connection refused"
    )

    response = migrator.run(MigrateS3UrlsEvent())

    assert response["success"] is False
    assert "connection refused" in response["errors"][-1]
    assert set(response["results"]) == ALL_RESULT_FIELDS
