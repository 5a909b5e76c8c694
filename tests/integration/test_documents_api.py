"""
Integration Tests — /api/documents
═══════════════════════════════════
These tests exercise the FULL FastAPI routing stack, including:
  - JSON and multipart parsing
  - Dependency injection chain (queue + usage recorder overridden)
  - Response status codes, camelCase bodies and headers
  - The in-process queue running the worker to completion

What is mocked vs real
──────────────────────
  ✅ Real: FastAPI routing, Pydantic validation, IngestionService,
           DocumentRegistry (SQLite), local storage, ExtractionWorker
  🔲 Mock: AI provider     (FakeExtractor)
  🔲 Mock: remote URLs     (httpx.MockTransport over remote_files)
  🔲 Mock: Celery broker   (InProcessJobQueue)

How to run
──────────
  pytest -m integration tests/integration/test_documents_api.py -v
"""

from __future__ import annotations

import pytest

from docintel.services import ingestion as ingestion_module
from tests.conftest import EXTRACTION_RESULT

URL = "https://files.example.com/reports/q3.pdf"


async def _create_project(client, user_id: str = "alice", name: str = "Finance") -> str:
    resp = await client.post("/api/projects", json={"name": name}, headers={"X-User-ID": user_id})
    assert resp.status_code == 201
    return resp.json()["id"]


# ─────────────────────────────────────────────────────────────────────────────
# POST /api/documents/register
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestRegisterEndpoint:

    async def test_register_then_ready(self, async_client, job_queue, remote_files, sample_pdf_bytes):
        remote_files[URL] = (200, sample_pdf_bytes, "application/pdf")

        resp = await async_client.post("/api/documents/register", json={"fileUrl": URL, "fileName": "q3.pdf"})

        assert resp.status_code == 202
        body = resp.json()
        document_id = body["documentId"]
        assert body["processing_id"] == document_id
        assert body["status"] == "queued"
        assert resp.headers["X-Document-ID"] == document_id
        assert resp.headers["Location"] == f"/api/documents/{document_id}/status"
        assert "X-Request-ID" in resp.headers

        await job_queue.drain()

        status_resp = await async_client.get(f"/api/documents/{document_id}/status")
        assert status_resp.json() == {"documentId": document_id, "status": "ready", "error": None}

        detail = (await async_client.get(f"/api/documents/{document_id}")).json()
        assert detail["fileName"] == "q3.pdf"
        assert detail["sourceUrl"] == URL
        assert detail["processingResult"] == EXTRACTION_RESULT

    async def test_url_alias_accepted(self, async_client):
        resp = await async_client.post("/api/documents/register", json={"url": URL})

        assert resp.status_code == 202

    async def test_unreachable_url_fails_document(self, async_client, job_queue):
        resp = await async_client.post("/api/documents/register", json={"fileUrl": URL})
        document_id = resp.json()["documentId"]

        await job_queue.drain()

        status_body = (await async_client.get(f"/api/documents/{document_id}/status")).json()
        assert status_body["status"] == "failed"
        assert "404" in status_body["error"]

    @pytest.mark.parametrize("payload", [{}, {"fileUrl": ""}, {"fileUrl": "ftp://files.example.com/a.pdf"}])
    async def test_bad_url_is_400(self, async_client, payload):
        resp = await async_client.post("/api/documents/register", json=payload)

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "VALIDATION_ERROR"

    async def test_project_requires_identity(self, async_client):
        resp = await async_client.post("/api/documents/register", json={"fileUrl": URL, "projectId": "p-1"})

        assert resp.status_code == 401
        assert resp.json()["error_code"] == "UNAUTHENTICATED"

    async def test_project_of_another_user_is_404(self, async_client):
        project_id = await _create_project(async_client, user_id="alice")

        resp = await async_client.post(
            "/api/documents/register",
            json={"fileUrl": URL, "projectId": project_id},
            headers={"X-User-ID": "mallory"},
        )

        assert resp.status_code == 404
        assert resp.json()["error_code"] == "PROJECT_NOT_FOUND"


# ─────────────────────────────────────────────────────────────────────────────
# POST /api/documents/upload
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestUploadEndpoint:

    async def test_valid_pdf_returns_202(self, async_client, job_queue, fake_extractor, sample_pdf_bytes):
        resp = await async_client.post(
            "/api/documents/upload",
            files={"document": ("q3 report.pdf", sample_pdf_bytes, "application/octet-stream")},
        )

        assert resp.status_code == 202
        body = resp.json()
        assert body["status"] == "queued"
        assert body["fileName"] == "q3_report.pdf"
        assert body["contentType"] == "application/pdf"
        assert body["sizeBytes"] == len(sample_pdf_bytes)

        await job_queue.drain()

        detail = (await async_client.get(f"/api/documents/{body['documentId']}")).json()
        assert detail["status"] == "ready"
        assert fake_extractor.calls[0]["mime_type"] == "application/pdf"

    async def test_location_header_resolves(self, async_client, sample_pdf_bytes):
        resp = await async_client.post(
            "/api/documents/upload",
            files={"document": ("q3.pdf", sample_pdf_bytes, "application/pdf")},
        )

        followed = await async_client.get(resp.headers["Location"])

        assert followed.status_code == 200
        assert followed.json()["documentId"] == resp.json()["documentId"]

    async def test_wrong_field_name_is_missing_file(self, async_client, sample_pdf_bytes):
        resp = await async_client.post(
            "/api/documents/upload",
            files={"file": ("q3.pdf", sample_pdf_bytes, "application/pdf")},
        )

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "MISSING_FILE"

    async def test_executable_is_rejected(self, async_client, exe_bytes):
        resp = await async_client.post(
            "/api/documents/upload",
            files={"document": ("invoice.pdf", exe_bytes, "application/pdf")},
        )

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "UNSUPPORTED_MEDIA_TYPE"
        assert (await async_client.get("/api/documents")).json() == []

    async def test_csv_is_rejected_before_queuing(self, async_client):
        resp = await async_client.post(
            "/api/documents/upload",
            files={"document": ("ledger.csv", b"date,amount\n2024-01-01,10\n", "text/csv")},
        )

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "UNSUPPORTED_MEDIA_TYPE"
        assert (await async_client.get("/api/documents")).json() == []

    async def test_oversized_is_413(self, async_client, monkeypatch, sample_pdf_bytes):
        monkeypatch.setattr(ingestion_module.settings, "max_upload_bytes", 64)

        resp = await async_client.post(
            "/api/documents/upload",
            files={"document": ("q3.pdf", sample_pdf_bytes, "application/pdf")},
        )

        assert resp.status_code == 413
        assert resp.json()["error_code"] == "FILE_TOO_LARGE"

    async def test_upload_into_owned_project(self, async_client, sample_png_bytes):
        project_id = await _create_project(async_client, user_id="alice")

        resp = await async_client.post(
            "/api/documents/upload",
            files={"document": ("scan.png", sample_png_bytes, "image/png")},
            data={"projectId": project_id},
            headers={"X-User-ID": "alice"},
        )

        assert resp.status_code == 202
        listed = (await async_client.get("/api/documents", params={"projectId": project_id})).json()
        assert [doc["id"] for doc in listed] == [resp.json()["documentId"]]
        assert listed[0]["projectId"] == project_id


# ─────────────────────────────────────────────────────────────────────────────
# Reads
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestReadEndpoints:

    async def test_unknown_document_is_404(self, async_client):
        resp = await async_client.get("/api/documents/doc_missing/status", headers={"X-Request-ID": "req-42"})

        assert resp.status_code == 404
        assert resp.json() == {
            "error":      "Document 'doc_missing' not found",
            "error_code": "DOCUMENT_NOT_FOUND",
            "request_id": "req-42",
        }
        assert resp.headers["X-Request-ID"] == "req-42"

    async def test_list_includes_every_document(self, async_client):
        ids = set()
        for name in ("a.pdf", "b.pdf", "c.pdf"):
            resp = await async_client.post(
                "/api/documents/register", json={"fileUrl": f"https://files.example.com/{name}"},
            )
            ids.add(resp.json()["documentId"])

        listed = (await async_client.get("/api/documents")).json()

        assert {doc["id"] for doc in listed} == ids

    async def test_queued_document_has_no_result(self, async_client, registry):
        doc = await registry.register_url(URL, file_name="q3.pdf")

        detail = (await async_client.get(f"/api/documents/{doc.id}")).json()

        assert detail["status"] == "queued"
        assert detail["processingResult"] is None
