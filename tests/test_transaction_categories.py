"""Tests for the Medical Records transaction category endpoints."""

from conftest import DEPARTMENT_ID, RECORD_ID, USER_ID, api_error

BATCH = {
    "metric_date": "2025-06-03",
    "department_id": DEPARTMENT_ID,
    "entries": [
        {"category": "Medical Certificate", "count": 4},
        {"category": "Insurance Claims", "count": 0},
    ],
}


class TestSaveTransactionCategories:
    def test_upserts_and_audits(self, client, db) -> None:
        db.get_user_role.return_value = "department_head"
        db.upsert_transaction_categories.return_value = [{"id": RECORD_ID}]

        response = client.post("/api/transaction-categories/", json=BATCH)

        assert response.status_code == 201
        rows = db.upsert_transaction_categories.call_args.args[0]
        assert [row["category"] for row in rows] == ["Medical Certificate", "Insurance Claims"]
        assert all(row["updated_by"] == USER_ID for row in rows)

        audit = db.insert_audit_log.call_args.args[0]
        assert audit["table_name"] == "transaction_category_entries"
        assert audit["record_id"] == DEPARTMENT_ID
        assert audit["new_data"]["entries"][0] == {"category": "Medical Certificate", "count": 4}

    def test_requires_profile_role(self, client, db) -> None:
        db.get_user_role.side_effect = api_error("42501")

        response = client.post("/api/transaction-categories/", json=BATCH)

        assert response.status_code == 403
        db.upsert_transaction_categories.assert_not_called()

    def test_unknown_category(self, client, db) -> None:
        payload = dict(BATCH, entries=[{"category": "Parking", "count": 1}])

        response = client.post("/api/transaction-categories/", json=payload)

        assert response.status_code == 400
        assert "category" in response.json()["details"]

    def test_negative_count(self, client, db) -> None:
        payload = dict(BATCH, entries=[{"category": "Medical Certificate", "count": -2}])

        response = client.post("/api/transaction-categories/", json=payload)

        assert response.status_code == 400
        assert "count" in response.json()["details"]


class TestTransactionSummary:
    def test_requires_department(self, client, db) -> None:
        response = client.get("/api/transaction-categories/summary")

        assert response.status_code == 400
        assert "department_id" in response.json()["details"]

    def test_totals(self, client, db) -> None:
        db.transaction_category_rows.return_value = [
            {"category": "Medical Certificate", "count": 4, "metric_date": "2025-06-01"},
            {"category": "Medical Certificate", "count": 1, "metric_date": "2025-06-02"},
            {"category": "Birth Certificate", "count": 2, "metric_date": "2025-06-02"},
        ]

        response = client.get(
            "/api/transaction-categories/summary",
            params={"department_id": DEPARTMENT_ID, "start_date": "2025-06-01", "end_date": "2025-06-30"},
        )

        assert response.status_code == 200
        assert response.json()["data"] == {
            "category_totals": {"Medical Certificate": 5, "Birth Certificate": 2},
            "daily_totals": [
                {"date": "2025-06-01", "total": 4},
                {"date": "2025-06-02", "total": 3},
            ],
            "grand_total": 7,
        }
        db.transaction_category_rows.assert_awaited_once_with(
            DEPARTMENT_ID, "2025-06-01", "2025-06-30"
        )


class TestSingleEntry:
    def test_update_count(self, client, db) -> None:
        db.update_transaction_category.return_value = {"id": RECORD_ID, "count": 9}

        response = client.put(f"/api/transaction-categories/{RECORD_ID}", json={"count": 9})

        assert response.status_code == 200
        db.update_transaction_category.assert_awaited_once_with(RECORD_ID, 9, USER_ID)

    def test_invalid_id(self, client, db) -> None:
        response = client.put("/api/transaction-categories/42", json={"count": 9})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid transaction category id"

    def test_delete_missing(self, client, db) -> None:
        db.delete_transaction_category.side_effect = api_error("PGRST116")

        response = client.delete(f"/api/transaction-categories/{RECORD_ID}")

        assert response.status_code == 404
        assert response.json()["error"] == "Transaction category entry not found"
