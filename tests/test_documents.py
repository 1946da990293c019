"""Tests for the document library endpoints."""

import io
from unittest.mock import patch

import httpx
from reportlab.pdfgen import canvas
from storage3.utils import StorageException

from conftest import DEPARTMENT_ID, RECORD_ID, api_error

DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def document_row(**overrides) -> dict:
    row = {
        "id": RECORD_ID,
        "title": "Infection control policy",
        "department_id": DEPARTMENT_ID,
        "storage_path": f"{DEPARTMENT_ID}/policy.pdf",
        "file_name": "policy.pdf",
        "file_size_bytes": 1024,
        "mime_type": "application/pdf",
        "checksum": "abc",
        "version": 1,
        "status": "active",
    }
    row.update(overrides)
    return row


def small_pdf() -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer)
    c.drawString(72, 720, "Policy")
    c.showPage()
    c.save()
    return buffer.getvalue()


class TestListDocuments:
    def test_status_filter(self, client, db) -> None:
        db.list_documents.return_value = ([document_row()], 1)

        response = client.get("/api/documents/", params={"status": "active", "search": "policy"})

        assert response.status_code == 200
        assert response.json()["pagination"]["total"] == 1
        kwargs = db.list_documents.call_args.kwargs
        assert kwargs["status"] == "active"
        assert kwargs["search"] == "policy"


class TestCreateDocument:
    def test_registers_uploaded_file(self, client, db) -> None:
        db.create_document.return_value = document_row()

        response = client.post("/api/documents/", json={
            "title": "Infection control policy",
            "department_id": DEPARTMENT_ID,
            "storage_path": f"{DEPARTMENT_ID}/policy.pdf",
            "file_name": "policy.pdf",
            "file_size_bytes": 1024,
            "mime_type": "application/pdf",
            "checksum": "abc",
        })

        assert response.status_code == 201
        row = db.create_document.call_args.args[0]
        assert row["status"] == "active"
        assert row["version"] == 1

    def test_rejects_oversize(self, client, db) -> None:
        response = client.post("/api/documents/", json={
            "title": "Huge",
            "department_id": DEPARTMENT_ID,
            "storage_path": "a/b.pdf",
            "file_name": "b.pdf",
            "file_size_bytes": 26 * 1024 * 1024,
            "mime_type": "application/pdf",
            "checksum": "abc",
        })

        assert response.status_code == 400
        assert "file_size_bytes" in response.json()["details"]


class TestUploadDocument:
    def test_stores_file_and_row(self, client, db) -> None:
        db.create_document.return_value = document_row(mime_type=DOCX)

        response = client.post(
            "/api/documents/upload",
            data={"title": "Roster", "department_id": DEPARTMENT_ID},
            files={"file": ("May roster.docx", b"docx-bytes", DOCX)},
        )

        assert response.status_code == 201
        bucket, path, content, content_type = db.upload_file.call_args.args
        assert bucket == "documents"
        assert path.startswith(f"{DEPARTMENT_ID}/")
        assert path.endswith("-May-roster.docx")
        assert content == b"docx-bytes"
        row = db.create_document.call_args.args[0]
        assert row["storage_path"] == path
        assert row["file_size_bytes"] == len(b"docx-bytes")
        assert len(row["checksum"]) == 64

    def test_requires_file(self, client, db) -> None:
        response = client.post(
            "/api/documents/upload",
            data={"title": "Roster", "department_id": DEPARTMENT_ID},
        )

        assert response.status_code == 400
        assert response.json()["details"] == {"file": ["A file is required"]}

    def test_rejects_type(self, client, db) -> None:
        response = client.post(
            "/api/documents/upload",
            data={"title": "Notes", "department_id": DEPARTMENT_ID},
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json()["error"].startswith("Unsupported document type")
        db.upload_file.assert_not_called()

    def test_storage_failure(self, client, db) -> None:
        db.upload_file.side_effect = StorageException({"statusCode": 500, "message": "down"})

        response = client.post(
            "/api/documents/upload",
            data={"title": "Policy", "department_id": DEPARTMENT_ID},
            files={"file": ("policy.pdf", b"%PDF", "application/pdf")},
        )

        assert response.status_code == 500
        assert response.json()["code"] == "STORAGE_UPLOAD_FAILED"
        db.create_document.assert_not_called()

    def test_insert_failure_removes_file(self, client, db) -> None:
        db.create_document.side_effect = api_error("42501")

        response = client.post(
            "/api/documents/upload",
            data={"title": "Policy", "department_id": DEPARTMENT_ID},
            files={"file": ("policy.pdf", b"%PDF", "application/pdf")},
        )

        assert response.status_code == 403
        stored_path = db.upload_file.call_args.args[1]
        db.remove_files.assert_awaited_once_with("documents", [stored_path])


class TestDeleteDocument:
    def test_department_head_forbidden(self, client, db) -> None:
        db.get_user_role.return_value = "department_head"

        response = client.delete(f"/api/documents/{RECORD_ID}")

        assert response.status_code == 403
        db.soft_delete_document.assert_not_called()

    def test_missing_profile_forbidden(self, client, db) -> None:
        db.get_user_role.return_value = None

        response = client.delete(f"/api/documents/{RECORD_ID}")

        assert response.status_code == 403

    def test_avp_soft_deletes(self, client, db) -> None:
        db.get_user_role.return_value = "avp"
        db.soft_delete_document.return_value = document_row(status="deleted")

        response = client.delete(f"/api/documents/{RECORD_ID}")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "deleted"


class TestDownloadDocument:
    def test_non_pdf_rejected(self, client, db) -> None:
        db.get_document.return_value = document_row(mime_type=DOCX)

        response = client.get(f"/api/documents/{RECORD_ID}/download")

        assert response.status_code == 415
        assert response.json() == {
            "error": "Only PDF download is supported",
            "code": "UNSUPPORTED_MEDIA_TYPE",
        }

    def test_watermarked_download(self, client, db) -> None:
        db.get_document.return_value = document_row()
        db.fetch_signed_file.return_value = httpx.Response(200, content=small_pdf())

        with patch(
            "hospital_portal.routers.documents.apply_pdf_watermark", return_value=b"%PDF-stamped"
        ) as watermark:
            response = client.get(f"/api/documents/{RECORD_ID}/download")

        assert response.status_code == 200
        assert response.content == b"%PDF-stamped"
        assert response.headers["content-disposition"] == 'attachment; filename="watermarked-policy.pdf"'
        assert response.headers["cache-control"] == "private, no-store"
        kwargs = watermark.call_args.kwargs
        assert kwargs["user_email"] == "head@hospital.test"
        assert kwargs["document_id"] == RECORD_ID
        assert kwargs["timestamp_iso"].endswith("Z")

    def test_unreadable_pdf(self, client, db) -> None:
        db.get_document.return_value = document_row()
        db.fetch_signed_file.return_value = httpx.Response(200, content=b"not a pdf")

        response = client.get(f"/api/documents/{RECORD_ID}/download")

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to prepare document download"
