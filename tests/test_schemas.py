"""Tests for request validation rules that go beyond field types."""

import pytest
from pydantic import ValidationError

from hospital_portal.models.schemas import (
    AnnouncementCreate,
    AnnouncementUpdate,
    DocumentCreate,
    IncidentUpdate,
    MessageThreadCreate,
    MetricCreate,
    MetricUpdate,
    TransactionCategoryBatch,
    census_violations,
)

DEPARTMENT_ID = "22222222-2222-4222-8222-222222222222"


def metric_payload(**overrides) -> dict:
    payload = {
        "metric_date": "2025-06-01",
        "department_id": DEPARTMENT_ID,
        "revenue_total": 1000,
        "monthly_input_count": 5,
        "census_total": 10,
        "census_opd": 4,
        "census_er": 3,
        "equipment_utilization_pct": 75.5,
    }
    payload.update(overrides)
    return payload


class TestAnnouncementScope:
    def test_system_wide_without_department(self) -> None:
        announcement = AnnouncementCreate(title="  Drill  ", content="Fire drill", is_system_wide=True)
        assert announcement.title == "Drill"
        assert announcement.priority.value == "normal"

    def test_system_wide_with_department_rejected(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            AnnouncementCreate(
                title="Drill", content="x", is_system_wide=True, department_id=DEPARTMENT_ID
            )
        assert excinfo.value.errors()[0]["loc"] == ("department_id",)

    def test_department_scope_requires_department(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            AnnouncementCreate(title="Drill", content="x", is_system_wide=False)
        assert "department_id is required" in str(excinfo.value)

    def test_expires_at_needs_offset(self) -> None:
        with pytest.raises(ValidationError):
            AnnouncementCreate(
                title="t", content="c", is_system_wide=True, expires_at="2025-06-01T10:00:00"
            )
        AnnouncementCreate(
            title="t", content="c", is_system_wide=True, expires_at="2025-06-01T10:00:00+08:00"
        )

    def test_memo_fields_all_or_none(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            AnnouncementCreate(
                title="t", content="c", is_system_wide=True, memo_file_name="memo.pdf"
            )
        assert "provided together" in str(excinfo.value)

        announcement = AnnouncementCreate(
            title="t",
            content="c",
            is_system_wide=True,
            memo_file_name="memo.pdf",
            memo_storage_path="memos/memo.pdf",
            memo_mime_type="application/pdf",
            memo_file_size_bytes=1024,
        )
        assert announcement.to_row("user-1")["memo_file_size_bytes"] == 1024

    def test_update_rejects_system_wide_with_department(self) -> None:
        with pytest.raises(ValidationError):
            AnnouncementUpdate(is_system_wide=True, department_id=DEPARTMENT_ID)
        assert AnnouncementUpdate(title="New").provided_fields() == {"title": "New"}

    def test_update_rejects_null_required_fields(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            AnnouncementUpdate(title=None, priority=None)
        assert "Fields cannot be null: priority, title" in str(excinfo.value)
        assert AnnouncementUpdate(department_id=None, expires_at=None).provided_fields() == {
            "department_id": None,
            "expires_at": None,
        }


class TestIncidentUpdate:
    def test_rejects_null_fields(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            IncidentUpdate(sbar_situation=None)
        assert "sbar_situation" in str(excinfo.value)

    def test_omitted_fields_are_not_sent(self) -> None:
        assert IncidentUpdate(is_resolved=True).provided_fields() == {"is_resolved": True}


class TestDocumentCreate:
    def test_rejects_unsupported_mime_type(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            DocumentCreate(
                title="Policy",
                department_id=DEPARTMENT_ID,
                storage_path="a/b.txt",
                file_name="b.txt",
                file_size_bytes=10,
                mime_type="text/plain",
                checksum="abc",
            )
        assert "Unsupported document type" in str(excinfo.value)

    def test_row_defaults(self) -> None:
        document = DocumentCreate(
            title="Policy",
            department_id=DEPARTMENT_ID,
            storage_path="a/b.pdf",
            file_name="b.pdf",
            file_size_bytes=10,
            mime_type="application/pdf",
            checksum="abc",
        )
        row = document.to_row("user-1")
        assert row["version"] == 1
        assert row["status"] == "active"
        assert row["uploaded_by"] == "user-1"
        assert row["department_id"] == DEPARTMENT_ID


class TestMetrics:
    def test_census_violations(self) -> None:
        assert census_violations(10, 4, 3) == []
        assert census_violations(10, 8, 3) == ["census_opd + census_er must not exceed census_total"]
        assert census_violations(10, 1, 1, 6, 5) == [
            "census_walk_in + census_inpatient must not exceed census_total"
        ]
        assert census_violations(10, 1, 1, 60, None) == []

    def test_create_row_sets_authors(self) -> None:
        row = MetricCreate(**metric_payload()).to_row("user-1")
        assert row["created_by"] == row["updated_by"] == "user-1"

    def test_pharmacy_fields_detected(self) -> None:
        assert not MetricCreate(**metric_payload()).has_pharmacy_fields()
        assert MetricCreate(**metric_payload(pharmacy_revenue_opd=10)).has_pharmacy_fields()

    def test_equipment_percentage_bounds(self) -> None:
        with pytest.raises(ValidationError):
            MetricCreate(**metric_payload(equipment_utilization_pct=101))

    def test_update_requires_a_field(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            MetricUpdate()
        assert "At least one field" in str(excinfo.value)

    def test_update_cannot_null_required_field(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            MetricUpdate(census_total=None)
        assert "census_total" in str(excinfo.value)
        assert MetricUpdate(notes=None).provided_fields() == {"notes": None}


class TestMessaging:
    def test_thread_scope(self) -> None:
        with pytest.raises(ValidationError):
            MessageThreadCreate(title="t", body="b", is_system_wide=False)
        thread = MessageThreadCreate(
            title="t", body="b", is_system_wide=False, department_id=DEPARTMENT_ID
        )
        assert str(thread.department_id) == DEPARTMENT_ID


class TestTransactionCategories:
    def test_unknown_category_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TransactionCategoryBatch(
                metric_date="2025-06-01",
                department_id=DEPARTMENT_ID,
                entries=[{"category": "Parking Tickets", "count": 1}],
            )

    def test_rows(self) -> None:
        batch = TransactionCategoryBatch(
            metric_date="2025-06-01",
            department_id=DEPARTMENT_ID,
            entries=[{"category": "Medical Certificate", "count": 4}],
        )
        assert batch.to_rows("user-1") == [{
            "metric_date": "2025-06-01",
            "department_id": DEPARTMENT_ID,
            "category": "Medical Certificate",
            "count": 4,
            "created_by": "user-1",
            "updated_by": "user-1",
        }]

    def test_empty_batch_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TransactionCategoryBatch(
                metric_date="2025-06-01", department_id=DEPARTMENT_ID, entries=[]
            )
