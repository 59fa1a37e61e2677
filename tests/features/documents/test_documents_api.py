"""HTTP-level tests for uploading, retrieving and managing documents."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from urllib.parse import urlsplit

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from casedocs_api.db import db
from casedocs_api.features.documents.models import Document
from casedocs_api.features.documents.repository import DocumentsRepository
from casedocs_api.settings import Settings
from casedocs_api.storage import FilesystemStorage

pytestmark = pytest.mark.asyncio


def _stored_files(storage: FilesystemStorage) -> list:
    if not storage.base_dir.exists():
        return []
    return [path for path in storage.base_dir.rglob("*") if path.is_file()]


async def _row_count() -> int:
    async with db.sessionmaker() as session:
        return (await session.execute(select(func.count()).select_from(Document))).scalar_one()


async def _list(client: AsyncClient, client_id: str = "C-1001", **params) -> list[dict]:
    response = await client.get(f"/api/documents/{client_id}", params=params)
    assert response.status_code == 200, response.text
    return response.json()


# ---- Upload -----------------------------------------------------------------


async def test_upload_returns_metadata(upload_document, blob_storage: FilesystemStorage) -> None:
    response = await upload_document(category="medical", description="GP letter")

    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["clientId"] == "C-1001"
    assert payload["category"] == "medical"
    assert payload["description"] == "GP letter"
    assert payload["originalFileName"] == "intake-form.pdf"
    assert payload["mimeType"] == "application/pdf"
    assert payload["fileSizeBytes"] == len(b"%PDF-1.7 intake form")
    assert payload["tags"] == ["medical"]
    assert payload["relatedDocuments"] == []
    assert payload["accessCount"] == 0
    assert payload["isArchived"] is False
    assert payload["version"] == 1
    assert payload["uploadedBy"] == "Case Worker"
    assert payload["storageKey"].startswith("C-1001/medical/")
    assert payload["storageKey"].endswith("-intake-form.pdf")
    assert await blob_storage.exists(payload["storageKey"])

    uploaded = datetime.fromisoformat(payload["uploadDate"])
    retention = datetime.fromisoformat(payload["retentionDate"])
    assert retention.year - uploaded.year == 5


async def test_upload_round_trips_tags_and_related_documents(upload_document) -> None:
    response = await upload_document(
        category="legal",
        tags="court, tenancy ,",
        relatedDocuments=json.dumps(["doc-1", "doc-2"]),
        confidentialityLevel="restricted",
        uploadedBy="Advocate",
    )

    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["tags"] == ["court", "tenancy"]
    assert payload["relatedDocuments"] == ["doc-1", "doc-2"]
    assert payload["confidentialityLevel"] == "restricted"
    assert payload["uploadedBy"] == "Advocate"


async def test_upload_defaults_to_general_category(upload_document) -> None:
    response = await upload_document(filename="notes.txt", content=b"plain", content_type="text/plain")

    assert response.status_code == 200, response.text
    assert response.json()["category"] == "general"
    assert response.json()["tags"] == ["general"]
    assert response.json()["confidentialityLevel"] == "Medium"


async def test_upload_rejects_executables(upload_document, blob_storage: FilesystemStorage) -> None:
    response = await upload_document(
        filename="malware.exe",
        content=b"MZ\x90\x00",
        content_type="application/x-msdownload",
    )

    assert response.status_code == 400
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["type"] == "unsupported_file_type"
    assert _stored_files(blob_storage) == []
    assert await _row_count() == 0


async def test_upload_rejects_executable_declared_as_pdf(
    upload_document, blob_storage: FilesystemStorage
) -> None:
    response = await upload_document(
        filename="malware.exe",
        content=b"MZ\x90\x00",
        content_type="application/pdf",
    )

    assert response.status_code == 400
    assert response.json()["type"] == "unsupported_file_type"
    assert _stored_files(blob_storage) == []
    assert await _row_count() == 0


async def test_upload_without_file_is_rejected(async_client: AsyncClient) -> None:
    response = await async_client.post(
        "/api/documents/C-1001/upload",
        data={"category": "medical"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["type"] == "validation_failed"
    assert body["errors"][0]["path"] == "file"


async def test_upload_of_empty_file_is_rejected(upload_document) -> None:
    response = await upload_document(content=b"")

    assert response.status_code == 400
    assert response.json()["type"] == "validation_failed"
    assert await _row_count() == 0


async def test_upload_with_unknown_category_is_rejected(upload_document) -> None:
    response = await upload_document(category="recipes")

    assert response.status_code == 400
    assert response.json()["errors"][0]["path"] == "category"


async def test_upload_with_malformed_related_documents(upload_document) -> None:
    response = await upload_document(relatedDocuments="[not json")

    assert response.status_code == 400
    assert response.json()["errors"][0]["path"] == "relatedDocuments"


async def test_metadata_failure_leaves_no_blob(
    upload_document,
    blob_storage: FilesystemStorage,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def _fail(self, document):
        raise RuntimeError("database went away")

    monkeypatch.setattr(DocumentsRepository, "insert", _fail)

    response = await upload_document(category="financial")

    assert response.status_code == 500
    body = response.json()
    assert body["type"] == "database_error"
    assert "database went away" not in response.text
    assert _stored_files(blob_storage) == []
    assert await _row_count() == 0


# ---- Listing ----------------------------------------------------------------


async def test_listing_filters_and_orders(async_client: AsyncClient, upload_document) -> None:
    first = (await upload_document(category="medical", filename="a.pdf")).json()
    second = (await upload_document(category="legal", filename="b.pdf")).json()
    third = (await upload_document(category="medical", filename="c.pdf")).json()
    await upload_document("C-2002", category="medical", filename="other.pdf")

    documents = await _list(async_client)
    assert {item["documentId"] for item in documents} == {
        first["documentId"],
        second["documentId"],
        third["documentId"],
    }
    dates = [datetime.fromisoformat(item["uploadDate"]) for item in documents]
    assert dates == sorted(dates, reverse=True)

    medical = await _list(async_client, category="medical")
    assert {item["documentId"] for item in medical} == {first["documentId"], third["documentId"]}

    page = await _list(async_client, limit=1, offset=1)
    assert len(page) == 1
    assert page[0]["documentId"] == documents[1]["documentId"]


async def test_listing_unknown_client_is_empty(async_client: AsyncClient) -> None:
    assert await _list(async_client, "C-9999") == []


async def test_listing_rejects_unknown_category(async_client: AsyncClient) -> None:
    response = await async_client.get("/api/documents/C-1001", params={"category": "recipes"})

    assert response.status_code == 422
    assert response.json()["type"] == "validation_error"


# ---- Download ---------------------------------------------------------------


async def test_download_streams_bytes_and_counts_access(
    async_client: AsyncClient, upload_document
) -> None:
    content = b"%PDF-1.7 " + b"x" * 4096
    document = (await upload_document(filename="care plan.pdf", content=content)).json()

    for expected_count in (1, 2):
        response = await async_client.get(f"/api/documents/{document['documentId']}/download")
        assert response.status_code == 200
        assert response.content == content
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["content-length"] == str(len(content))
        assert "care plan.pdf" in response.headers["content-disposition"]

        (listed,) = await _list(async_client)
        assert listed["accessCount"] == expected_count
        assert listed["lastAccessed"] is not None


async def test_download_of_missing_blob_reports_integrity_fault(
    async_client: AsyncClient,
    upload_document,
    blob_storage: FilesystemStorage,
) -> None:
    document = (await upload_document()).json()
    blob_storage.path_for(document["storageKey"]).unlink()

    response = await async_client.get(f"/api/documents/{document['documentId']}/download")

    assert response.status_code == 404
    assert response.json()["type"] == "integrity_fault"
    (listed,) = await _list(async_client)
    assert listed["accessCount"] == 0


async def test_download_of_unknown_document(async_client: AsyncClient) -> None:
    unknown = "5f0b7c1e-8f0a-4d55-9d8e-1c2b3a4d5e6f"

    response = await async_client.get(f"/api/documents/{unknown}/download")
    assert response.status_code == 404
    assert response.json()["type"] == "not_found"

    malformed = await async_client.get("/api/documents/not-a-uuid/download")
    assert malformed.status_code == 404


# ---- Signed URLs ------------------------------------------------------------


async def test_download_link_is_time_limited_and_fetchable(
    async_client: AsyncClient, upload_document
) -> None:
    content = b"%PDF-1.7 signed"
    document = (await upload_document(content=content)).json()

    before = datetime.now(UTC)
    response = await async_client.get(
        f"/api/documents/{document['documentId']}/download-link",
        params={"ttl": 120},
    )
    assert response.status_code == 200, response.text
    payload = response.json()
    expires_on = datetime.fromisoformat(payload["expiresOn"])
    assert before + timedelta(seconds=118) <= expires_on <= before + timedelta(seconds=121)

    fetched = await async_client.get(payload["url"])
    assert fetched.status_code == 200
    assert fetched.content == content


async def test_download_url_by_storage_key(async_client: AsyncClient, upload_document) -> None:
    document = (await upload_document()).json()

    response = await async_client.get(
        "/api/documents/download-url",
        params={"key": document["storageKey"]},
    )

    assert response.status_code == 200, response.text
    assert urlsplit(response.json()["url"]).path.startswith("/api/storage/blobs/")


async def test_download_url_requires_key(async_client: AsyncClient) -> None:
    response = await async_client.get("/api/documents/download-url")

    assert response.status_code == 400
    assert response.json()["errors"][0]["path"] == "key"


@pytest.mark.parametrize("ttl", [0, -5, 90_000])
async def test_download_url_rejects_out_of_range_ttl(async_client: AsyncClient, ttl: int) -> None:
    response = await async_client.get(
        "/api/documents/download-url",
        params={"key": "C-1001/general/file.pdf", "ttl": ttl},
    )

    assert response.status_code == 400
    assert response.json()["errors"][0]["path"] == "ttl"


async def test_expired_signed_url_is_forbidden(
    async_client: AsyncClient,
    upload_document,
    blob_storage: FilesystemStorage,
    settings: Settings,
) -> None:
    document = (await upload_document()).json()
    issued_yesterday = FilesystemStorage(
        blob_storage.base_dir,
        signing_secret=settings.storage_signing_secret_value,
        public_url=settings.server_public_url,
        clock=lambda: datetime.now(UTC) - timedelta(days=1),
    )
    signed = await issued_yesterday.generate_signed_url(document["storageKey"], timedelta(minutes=5))

    response = await async_client.get(signed.url)

    assert response.status_code == 403
    assert response.json()["type"] == "forbidden"


async def test_tampered_signed_url_is_forbidden(async_client: AsyncClient, upload_document) -> None:
    document = (await upload_document()).json()
    link = (
        await async_client.get(f"/api/documents/{document['documentId']}/download-link")
    ).json()

    response = await async_client.get(link["url"] + "x")

    assert response.status_code == 403


# ---- Lifecycle --------------------------------------------------------------


async def test_update_metadata_whitelist(async_client: AsyncClient, upload_document) -> None:
    document = (await upload_document(category="medical")).json()
    url = f"/api/documents/{document['documentId']}"

    updated = await async_client.put(
        url,
        json={"category": "legal", "description": "Updated", "tags": ["court"], "version": 2},
    )
    assert updated.status_code == 200, updated.text
    body = updated.json()
    assert body["category"] == "legal"
    assert body["description"] == "Updated"
    assert body["tags"] == ["court"]
    assert body["version"] == 2
    assert datetime.fromisoformat(body["retentionDate"]) == datetime.fromisoformat(
        document["retentionDate"]
    )
    assert body["updatedBy"] == "Case Worker"

    structural = await async_client.put(url, json={"description": "x", "storageKey": "other/key"})
    assert structural.status_code == 400
    assert structural.json()["type"] == "validation_failed"

    empty = await async_client.put(url, json={})
    assert empty.status_code == 400

    bad_category = await async_client.put(url, json={"category": "recipes"})
    assert bad_category.status_code == 400

    (listed,) = await _list(async_client)
    assert listed["storageKey"] == document["storageKey"]
    assert listed["description"] == "Updated"


async def test_update_of_unknown_document(async_client: AsyncClient) -> None:
    response = await async_client.put(
        "/api/documents/5f0b7c1e-8f0a-4d55-9d8e-1c2b3a4d5e6f",
        json={"description": "nobody home"},
    )

    assert response.status_code == 404


async def test_approve_records_approver(async_client: AsyncClient, upload_document) -> None:
    document = (await upload_document()).json()
    url = f"/api/documents/{document['documentId']}/approve"

    named = await async_client.post(url, json={"approvedBy": "Team Lead"})
    assert named.status_code == 200, named.text
    assert named.json()["approvedBy"] == "Team Lead"
    assert named.json()["approvalDate"] is not None

    fallback = await async_client.post(url)
    assert fallback.status_code == 200, fallback.text
    assert fallback.json()["approvedBy"] == "Case Worker"


async def test_archive_hides_from_category_counts(
    async_client: AsyncClient, upload_document
) -> None:
    document = (await upload_document(category="housing")).json()

    archived = await async_client.post(
        f"/api/documents/{document['documentId']}/archive",
        json={"isArchived": True},
    )
    assert archived.status_code == 200, archived.text
    assert archived.json()["isArchived"] is True

    assert await _list(async_client, isArchived="false") == []
    assert len(await _list(async_client, isArchived="true")) == 1

    counts = (await async_client.get("/api/documents/C-1001/categories")).json()
    assert {item["category"]: item["count"] for item in counts}["housing"] == 0

    restored = await async_client.post(
        f"/api/documents/{document['documentId']}/archive",
        json={"isArchived": False},
    )
    assert restored.json()["isArchived"] is False


async def test_delete_removes_row_and_blob(
    async_client: AsyncClient,
    upload_document,
    blob_storage: FilesystemStorage,
) -> None:
    document = (await upload_document()).json()

    response = await async_client.delete(f"/api/documents/{document['documentId']}")

    assert response.status_code == 200, response.text
    assert response.json() == {
        "message": "Document deleted successfully",
        "documentId": document["documentId"],
    }
    assert not await blob_storage.exists(document["storageKey"])
    assert await _list(async_client) == []

    again = await async_client.delete(f"/api/documents/{document['documentId']}")
    assert again.status_code == 404

    download = await async_client.get(f"/api/documents/{document['documentId']}/download")
    assert download.status_code == 404
    assert download.json()["type"] == "not_found"


# ---- Aggregates -------------------------------------------------------------


async def test_category_counts_are_zero_filled(async_client: AsyncClient, upload_document) -> None:
    await upload_document(category="medical")
    await upload_document(category="legal")

    response = await async_client.get("/api/documents/C-1001/categories")

    assert response.status_code == 200
    counts = {item["category"]: item for item in response.json()}
    assert len(counts) == 9
    assert counts["medical"]["count"] == 1
    assert counts["legal"]["count"] == 1
    assert counts["legal"]["label"] == "Legal Documents"
    assert counts["general"]["count"] == 0


async def test_summary(async_client: AsyncClient, upload_document) -> None:
    empty = (await async_client.get("/api/documents/C-1001/summary")).json()
    assert empty["totalDocuments"] == 0
    assert empty["lastUpload"] is None
    assert empty["mostAccessedDocument"] == "None"

    first = (await upload_document(category="medical", content=b"a" * 10)).json()
    second = (
        await upload_document(category="legal", filename="lease.pdf", content=b"b" * 30)
    ).json()
    await async_client.get(f"/api/documents/{second['documentId']}/download")
    await async_client.post(
        f"/api/documents/{first['documentId']}/approve",
        json={"approvedBy": "Team Lead"},
    )

    summary = (await async_client.get("/api/documents/C-1001/summary")).json()

    assert summary["totalDocuments"] == 2
    assert summary["totalFileSize"] == 40
    assert summary["averageFileSize"] == 20
    assert summary["recentUploads"] == 2
    assert summary["pendingApprovals"] == 1
    assert summary["archivedDocuments"] == 0
    assert summary["documentsByCategory"] == {"medical": 1, "legal": 1}
    assert summary["mostAccessedDocument"] == "lease.pdf"
    assert summary["retentionAlerts"] == 0
    assert summary["lastUpload"] == datetime.now(UTC).date().isoformat()


# ---- Upload ceilings --------------------------------------------------------


@pytest.fixture()
def small_ceilings(base_env: dict[str, str], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CASEDOCS_DOCUMENTS_NOTES_UPLOAD_MAX_BYTES", "32")
    monkeypatch.setenv("CASEDOCS_DOCUMENTS_CLIENT_FILES_UPLOAD_MAX_BYTES", "16")


@pytest.mark.usefixtures("small_ceilings")
@pytest.mark.parametrize(
    ("path", "size", "status_code"),
    [
        ("upload", 64, 200),
        ("notes/upload", 32, 200),
        ("notes/upload", 33, 413),
        ("client-files/upload", 16, 200),
        ("client-files/upload", 17, 413),
    ],
)
async def test_upload_ceilings_per_entry_point(
    upload_document,
    blob_storage: FilesystemStorage,
    path: str,
    size: int,
    status_code: int,
) -> None:
    response = await upload_document(
        filename="note.txt",
        content=b"n" * size,
        content_type="text/plain",
        path=path,
    )

    assert response.status_code == status_code, response.text
    if status_code == 413:
        assert response.json()["type"] == "payload_too_large"
        assert _stored_files(blob_storage) == []
