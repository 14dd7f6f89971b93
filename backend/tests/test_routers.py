"""
Test suite for the HTTP surface.

Tests cover:
- /parse-receipt contract (CORS preflight from any origin, 405, 400, 500, success body)
- Draft reconciliation, commit and auto-tagging
- Claim override endpoints
- Tax-relief catalog, ledger, CSV export and Lifestyle pre-check
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from taxvault.main import app
from taxvault.models.entities import RawExtractedEntity
from taxvault.models.receipt import LineItem, Receipt
from taxvault.services.extraction import ExtractionResult, ExtractionUnavailable
from taxvault.services.storage import receipt_to_row
from fastapi.testclient import TestClient
from decimal import Decimal
from unittest.mock import Mock, patch
import csv
import io


client = TestClient(app)


def mock_client_returning(rows):
    """Supabase mock whose select queries all return rows."""
    response = Mock()
    response.data = rows

    mock_client = Mock()
    table = mock_client.table.return_value
    table.select.return_value.eq.return_value.eq.return_value.execute.return_value = response
    table.select.return_value.eq.return_value.gte.return_value.lte.return_value.order.return_value.execute.return_value = response
    table.insert.return_value.execute.return_value = Mock(data=[])
    return mock_client


def stored_receipt(receipt_id="r1", **item_kwargs):
    item = dict(id="item-1", name="Vitamin C 1000mg", unit_price=Decimal("45.90"))
    item.update(item_kwargs)
    return Receipt(id=receipt_id, user_id="u1", merchant="Guardian", date="2025-05-05",
                   total_amount=Decimal("45.90"), line_items=[LineItem(**item)])


class TestAppRoot:

    def test_root_and_health(self):
        assert client.get("/").json()["status"] == "running"
        assert client.get("/health").json() == {"status": "healthy"}


class TestParseReceipt:

    def test_preflight(self):
        response = client.options("/parse-receipt")

        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]

    def test_browser_preflight_from_any_origin(self):
        response = client.options("/parse-receipt", headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type",
        })

        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-allow-methods"] == "POST, OPTIONS"

    def test_cross_origin_post_keeps_permissive_headers(self):
        response = client.post("/parse-receipt", json={}, headers={"Origin": "https://app.example.com"})

        assert response.status_code == 400
        assert response.headers["access-control-allow-origin"] == "*"

    def test_other_routes_keep_app_cors_policy(self):
        preflight = {"Access-Control-Request-Method": "POST"}

        foreign = client.options("/receipts/reconcile", headers={"Origin": "https://app.example.com", **preflight})
        allowed = client.options("/receipts/reconcile", headers={"Origin": "http://localhost:5173", **preflight})

        assert foreign.status_code == 400
        assert allowed.status_code == 200
        assert allowed.headers["access-control-allow-origin"] == "http://localhost:5173"

    def test_wrong_method(self):
        response = client.get("/parse-receipt")

        assert response.status_code == 405
        assert response.json()["success"] is False

    def test_missing_image(self):
        response = client.post("/parse-receipt", json={"mimeType": "image/png"})

        assert response.status_code == 400
        assert "image" in response.json()["error"]

    def test_invalid_base64(self):
        response = client.post("/parse-receipt", json={"image": "not base64!!"})
        assert response.status_code == 400

    def test_non_string_image(self):
        response = client.post("/parse-receipt", json={"image": 123})

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "Base64" in response.json()["error"]

    def test_body_that_is_not_json(self):
        response = client.post("/parse-receipt", content=b"garbage",
                               headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Invalid request body",
            "details": "Expected a JSON object",
        }

    def test_body_that_is_not_an_object(self):
        response = client.post("/parse-receipt", json=["aGVsbG8="])
        assert response.status_code == 400

    @patch('taxvault.routers.extraction.DocumentAIClient')
    def test_success_body(self, mock_client_cls):
        mock_client_cls.return_value.process.return_value = ExtractionResult(
            text="AEON\nTOTAL 12.50",
            entities=[
                RawExtractedEntity(type="supplier_name", mentionText="AEON", confidence=0.91),
                RawExtractedEntity.model_validate({
                    "type": "total_amount", "mentionText": "12.50", "confidence": 0.88,
                    "normalizedValue": {"moneyValue": {"units": "12", "nanos": 500000000, "currencyCode": "MYR"}},
                }),
            ],
        )

        response = client.post("/parse-receipt", json={"image": "aGVsbG8=", "mimeType": "image/jpeg"})
        body = response.json()

        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["supplier_name"] == "AEON"
        assert body["data"]["total_amount"] == 12.5
        assert body["data"]["currency"] == "MYR"
        assert body["data"]["confidence_scores"]["total_amount"] == 0.88
        assert body["raw"]["text"].startswith("AEON")
        assert body["raw"]["entities"][0]["type"] == "supplier_name"
        assert body["raw"]["entities"][0]["mentionText"] == "AEON"

    @patch('taxvault.routers.extraction.DocumentAIClient')
    def test_processing_failure(self, mock_client_cls):
        mock_client_cls.return_value.process.side_effect = ExtractionUnavailable("Document AI request failed")

        response = client.post("/parse-receipt", json={"image": "aGVsbG8="})
        body = response.json()

        assert response.status_code == 500
        assert body == {
            "success": False,
            "error": "Document AI request failed",
            "details": "Failed to process receipt",
        }


class TestReconcileEndpoint:

    def test_sst_receipt(self):
        response = client.post("/receipts/reconcile", json={
            "items": [
                {"id": "a", "name": "Latte", "qty": 1, "unit": "18.90"},
                {"id": "b", "name": "Muffin", "qty": 1, "unit": "9.50"},
            ],
            "tax_rate": "6",
            "rounding": "0",
            "declared_total": "30.10",
        })
        body = response.json()

        assert response.status_code == 200
        assert Decimal(body["computed_total"]) == Decimal("30.104")
        assert body["mismatch"] is False
        assert body["warnings"] == []

    def test_mismatch_is_a_warning(self):
        response = client.post("/receipts/reconcile", json={
            "items": [{"id": "a", "name": "Latte", "quantity": 1, "unit_price": "10.00"}],
            "declared_total": "12.00",
        })
        body = response.json()

        assert response.status_code == 200
        assert body["mismatch"] is True
        assert body["warnings"][0]["code"] == "reconciliation_mismatch"


class TestCommitReceipt:

    @patch('taxvault.services.storage.get_supabase_client')
    def test_commit_with_mismatch_still_saves(self, mock_supabase):
        mock_client = mock_client_returning([])
        mock_supabase.return_value = mock_client

        response = client.post("/receipts", json={
            "user_id": "u1",
            "merchant": "Machines",
            "date": "2025-07-01",
            "total_amount": "4999.00",
            "line_items": [
                {"id": "item-1", "name": "MacBook Air", "quantity": 1, "unit_price": "4800.00",
                 "claimable": True, "tag": "Lifestyle"},
            ],
        })
        body = response.json()

        assert response.status_code == 200
        assert body["receipt"]["claimable"] is True
        assert body["receipt"]["verification_status"] == "pending"
        assert body["lifestyle_amount"] == "4800.00"
        assert body["reconciliation"]["mismatch"] is True
        assert "reconciliation_mismatch" in [w["code"] for w in body["warnings"]]
        mock_client.table.return_value.insert.assert_called_once()

    @patch('taxvault.services.storage.get_supabase_client')
    def test_unreviewed_items_are_auto_tagged(self, mock_supabase):
        mock_supabase.return_value = mock_client_returning([])

        response = client.post("/receipts", json={
            "user_id": "u1",
            "merchant": "Klinik Kesihatan",
            "date": "2025-02-03",
            "total_amount": "135.90",
            "reviewed_item_ids": ["item-3"],
            "line_items": [
                {"id": "item-1", "name": "Vaccination (Flu)", "unit_price": "80.00"},
                {"id": "item-2", "name": "Vitamin C 1000mg", "unit_price": "45.90"},
                {"id": "item-3", "name": "Flu vaccine booster", "unit_price": "10.00"},
            ],
        })
        body = response.json()
        items = {item["id"]: item for item in body["receipt"]["line_items"]}

        assert response.status_code == 200
        assert items["item-1"]["claimable"] is True
        assert items["item-1"]["tag"] == "Medical"
        assert items["item-1"]["auto_assigned"] is True
        assert items["item-2"]["claimable"] is False
        # User already decided on this one
        assert items["item-3"]["claimable"] is False
        assert body["receipt"]["tags"] == ["Medical"]
        assert body["receipt"]["claimable"] is True
        assert body["reconciliation"]["mismatch"] is False
        assert [(e["item_id"], e["reason"]) for e in body["exclusions"]] == [
            ("item-2", "Non-medical supplement"),
            ("item-3", "No tax category matched"),
        ]

    @patch('taxvault.services.storage.get_supabase_client')
    def test_auto_tag_can_be_turned_off(self, mock_supabase):
        mock_supabase.return_value = mock_client_returning([])

        response = client.post("/receipts", json={
            "user_id": "u1",
            "merchant": "Klinik Kesihatan",
            "date": "2025-02-03",
            "total_amount": "80.00",
            "auto_tag": False,
            "line_items": [{"id": "item-1", "name": "Vaccination (Flu)", "unit_price": "80.00"}],
        })
        receipt = response.json()["receipt"]

        assert receipt["line_items"][0]["claimable"] is False
        assert receipt["tags"] == []
        assert receipt["claimable"] is False

    @patch('taxvault.services.storage.get_supabase_client')
    def test_suspicious_claims_are_warned_not_blocked(self, mock_supabase):
        mock_supabase.return_value = mock_client_returning([])

        response = client.post("/receipts", json={
            "user_id": "u1",
            "merchant": "Machines",
            "date": "2025-07-01",
            "total_amount": "3000.00",
            "line_items": [
                {"id": "item-1", "name": "Lenovo Laptop", "unit_price": "3000.00",
                 "claimable": True, "tag": "Medical"},
            ],
        })
        body = response.json()
        miscategorized = [w for w in body["warnings"] if w["code"] == "miscategorized"]

        assert response.status_code == 200
        assert body["receipt"]["line_items"][0]["tag"] == "Medical"
        assert miscategorized[0]["field"] == "line_items.item-1"

    def test_integrity_problems_are_rejected(self):
        response = client.post("/receipts", json={
            "user_id": "u1",
            "merchant": "",
            "date": "2025-07-01",
        })

        assert response.status_code == 422
        assert response.json()["detail"][0]["field"] == "merchant"


class TestClaimEndpoints:

    @patch('taxvault.services.storage.get_supabase_client')
    def test_request_then_confirm(self, mock_supabase):
        mock_client = mock_client_returning([receipt_to_row(stored_receipt("claim-r1"))])
        mock_supabase.return_value = mock_client

        pending = client.post("/receipts/claim-r1/items/item-1/claim?user_id=u1", json={"tag": "Medical"})
        assert pending.status_code == 200
        assert pending.json()["status"] == "pending_confirmation"
        assert pending.json()["typically_ineligible"] is True
        assert pending.json()["reason"]
        mock_client.table.return_value.update.assert_not_called()

        confirmed = client.post("/receipts/claim-r1/items/item-1/claim/confirm?user_id=u1")
        body = confirmed.json()

        assert confirmed.status_code == 200
        assert body["item"]["claimable"] is True
        assert body["item"]["tag"] == "Medical"
        assert body["item"]["auto_assigned"] is False
        assert body["claimable"] is True
        mock_client.table.return_value.update.assert_called_once()

    @patch('taxvault.services.storage.get_supabase_client')
    def test_prompt_suggests_better_category(self, mock_supabase):
        mock_supabase.return_value = mock_client_returning(
            [receipt_to_row(stored_receipt("claim-r6", name="Lenovo Laptop"))]
        )

        body = client.post("/receipts/claim-r6/items/item-1/claim?user_id=u1", json={"tag": "Medical"}).json()

        assert body["categorization_valid"] is False
        assert body["suggested_tag"] == "Lifestyle"
        assert body["categorization_reason"]

    @patch('taxvault.services.storage.get_supabase_client')
    def test_confirm_without_request_conflicts(self, mock_supabase):
        mock_supabase.return_value = mock_client_returning([receipt_to_row(stored_receipt("claim-r2"))])

        response = client.post("/receipts/claim-r2/items/item-1/claim/confirm?user_id=u1")
        assert response.status_code == 409

    @patch('taxvault.services.storage.get_supabase_client')
    def test_cancel(self, mock_supabase):
        mock_client = mock_client_returning([receipt_to_row(stored_receipt("claim-r3"))])
        mock_supabase.return_value = mock_client

        client.post("/receipts/claim-r3/items/item-1/claim?user_id=u1", json={"tag": "Medical"})
        response = client.post("/receipts/claim-r3/items/item-1/claim/cancel?user_id=u1")

        assert response.status_code == 200
        assert response.json()["item"]["claimable"] is False
        mock_client.table.return_value.update.assert_not_called()

    @patch('taxvault.services.storage.get_supabase_client')
    def test_delete_claim_is_immediate(self, mock_supabase):
        row = receipt_to_row(stored_receipt("claim-r4", name="Laptop", claimable=True, tag="Lifestyle"))
        mock_client = mock_client_returning([row])
        mock_supabase.return_value = mock_client

        response = client.delete("/receipts/claim-r4/items/item-1/claim?user_id=u1")
        body = response.json()

        assert response.status_code == 200
        assert body["item"]["claimable"] is False
        assert body["item"]["tag"] is None
        mock_client.table.return_value.update.assert_called_once()

    @patch('taxvault.services.storage.get_supabase_client')
    def test_unknown_item(self, mock_supabase):
        mock_supabase.return_value = mock_client_returning([receipt_to_row(stored_receipt("claim-r5"))])

        response = client.post("/receipts/claim-r5/items/item-9/claim?user_id=u1", json={"tag": "Medical"})
        assert response.status_code == 404


class TestTaxReliefEndpoints:

    def rows(self):
        return [receipt_to_row(Receipt(
            id="r1", user_id="u1", merchant="Decathlon", date="2025-03-01", claimable=True,
            line_items=[LineItem(id="item-1", name="Treadmill", unit_price=Decimal("1200"),
                                 claimable=True, tag="Sports")],
        ))]

    @patch('taxvault.services.storage.get_supabase_client')
    def test_ledger(self, mock_supabase):
        mock_supabase.return_value = mock_client_returning(self.rows())

        body = client.get("/tax-relief/2025/ledger?user_id=u1").json()
        sports = next(c for c in body["categories"] if c["tag"] == "Sports")

        assert Decimal(sports["accumulated"]) == Decimal("1200")
        assert sports["exceeded"] is True
        assert Decimal(sports["excess"]) == Decimal("200")
        assert body["warnings"][0]["code"] == "cap_exceeded"

    @patch('taxvault.services.storage.get_supabase_client')
    def test_report_csv(self, mock_supabase):
        mock_supabase.return_value = mock_client_returning(self.rows())

        response = client.get("/tax-relief/2025/report.csv?user_id=u1")
        rows = list(csv.reader(io.StringIO(response.text)))

        assert response.status_code == 200
        assert "attachment" in response.headers["content-disposition"]
        assert rows[1][:5] == ['Sports', 'RM 1,000.00', '2025-03-01', 'Decathlon', 'Treadmill']

    @patch('taxvault.services.storage.get_supabase_client')
    def test_report_csv_empty_year(self, mock_supabase):
        mock_supabase.return_value = mock_client_returning([])

        response = client.get("/tax-relief/2025/report.csv?user_id=u1")
        assert response.status_code == 404

    @patch('taxvault.services.storage.get_supabase_client')
    def test_report_json(self, mock_supabase):
        mock_supabase.return_value = mock_client_returning(self.rows())

        body = client.get("/tax-relief/2025/report?user_id=u1").json()

        assert body["year"] == 2025
        assert body["groups"][0]["tag"] == "Sports"
        assert Decimal(body["grand_total"]) == Decimal("1200")

    def test_category_catalog(self):
        categories = {c["tag"]: c for c in client.get("/tax-relief/categories").json()["categories"]}

        assert categories["Medical"]["limit"] == "10000"
        assert "vaccination" in [s["name"] for s in categories["Medical"]["sub_limits"]]
        assert "Vitamins and supplements" in categories["Medical"]["not_eligible"]
        assert categories["Childcare"]["condition"] == "Child aged 6 years and below"
        assert categories["Others"]["limit"] is None

    def test_lifestyle_check(self):
        response = client.post("/tax-relief/lifestyle-check", json={
            "current_ytd": "2000", "new_amount": "600", "lifestyle_cap": "2500",
        })
        body = response.json()

        assert body["would_exceed"] is True
        assert Decimal(body["remaining"]) == Decimal("500")
        assert Decimal(body["remaining_after"]) == Decimal("0")
