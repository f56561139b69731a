# Overview: Pytest coverage for the /api/transactions endpoints.

import pytest
from sqlalchemy import BigInteger

from mypos.models import AuditLog, Product, Purchase, Transaction, TransactionItem


class TestCreateTransaction:
    def test_checkout_returns_invoice(self, client, auth_headers, make_product, sale_payload, stock_of):
        product = make_product(stock=10, sale_price=3000)

        response = client.post("/api/transactions", json=sale_payload([(product, 4)]), headers=auth_headers)

        assert response.status_code == 201
        body = response.get_json()
        assert body["invoice_number"].startswith("INV-")
        assert body["item_count"] == 1
        assert stock_of(product.id) == 6

    def test_insufficient_stock_is_422_with_product_details(self, client, auth_headers, make_product, sale_payload):
        product = make_product(stock=1, name="Kopi Susu")

        response = client.post("/api/transactions", json=sale_payload([(product, 2)]), headers=auth_headers)

        assert response.status_code == 422
        body = response.get_json()
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["details"] == {
            "product_id": product.id,
            "product_name": "Kopi Susu",
            "requested": 2,
            "available": 1,
        }

    def test_unknown_product_is_404(self, client, auth_headers, make_product, sale_payload):
        product = make_product(stock=5)
        payload = sale_payload([(product, 1)])
        payload["items"][0]["product_id"] = 99999

        response = client.post("/api/transactions", json=payload, headers=auth_headers)

        assert response.status_code == 404
        assert response.get_json()["code"] == "PRODUCT_NOT_FOUND"

    @pytest.mark.parametrize("mutate", [
        lambda p: p["items"][0].update(subtotal=p["items"][0]["subtotal"] + 1),
        lambda p: p.update(subtotal=p["subtotal"] - 1),
        lambda p: p.update(grand_total=p["grand_total"] + 1),
        lambda p: p.update(amount_paid=p["grand_total"] - 1, change=-1),
        lambda p: p.update(change=p["change"] + 500),
        lambda p: p.update(items=[]),
        lambda p: p.update(payment_method="cheque"),
        lambda p: p["items"][0].update(quantity=1.5),
        lambda p: p["items"][0].update(quantity=0),
    ])
    def test_invalid_payload_is_400_and_moves_no_stock(
        self, client, auth_headers, make_product, sale_payload, stock_of, mutate
    ):
        product = make_product(stock=10)
        payload = sale_payload([(product, 2)])
        mutate(payload)

        response = client.post("/api/transactions", json=payload, headers=auth_headers)

        assert response.status_code == 400
        assert response.get_json()["code"] == "VALIDATION_ERROR"
        assert stock_of(product.id) == 10

    def test_omitted_change_is_derived(self, client, auth_headers, make_product, sale_payload, db_session):
        product = make_product(stock=10, sale_price=45000)
        payload = sale_payload([(product, 1)], paid=50000)
        del payload["change"]

        response = client.post("/api/transactions", json=payload, headers=auth_headers)

        assert response.status_code == 201
        txn = db_session.get(Transaction, response.get_json()["id"])
        assert txn.amount_paid == 50000
        assert txn.change == 5000

    def test_amounts_beyond_32_bits_are_stored(self, client, auth_headers, make_product, sale_payload, db_session):
        product = make_product(stock=5, sale_price=3_000_000_000)

        response = client.post("/api/transactions", json=sale_payload([(product, 2)]), headers=auth_headers)

        assert response.status_code == 201
        txn = db_session.get(Transaction, response.get_json()["id"])
        assert txn.grand_total == 6_000_000_000
        assert txn.items[0].unit_price == 3_000_000_000

        money_columns = [
            Transaction.__table__.c.grand_total,
            Transaction.__table__.c.amount_paid,
            TransactionItem.__table__.c.subtotal,
            Product.__table__.c.sale_price,
            Purchase.__table__.c.total,
        ]
        assert all(isinstance(column.type, BigInteger) for column in money_columns)

    def test_too_many_items_is_400(self, app, client, auth_headers, make_product, sale_payload):
        app.config["SALE_MAX_ITEMS"] = 2
        product = make_product(stock=10)

        response = client.post(
            "/api/transactions", json=sale_payload([(product, 1)] * 3), headers=auth_headers
        )

        assert response.status_code == 400

    def test_idempotent_retry_replays(self, client, auth_headers, make_product, sale_payload, stock_of):
        product = make_product(stock=10)
        payload = sale_payload([(product, 3)])
        headers = {**auth_headers, "Idempotency-Key": "pos-1-0001"}

        first = client.post("/api/transactions", json=payload, headers=headers)
        second = client.post("/api/transactions", json=payload, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 201
        assert second.headers.get("Idempotent-Replay") == "true"
        assert second.get_json() == first.get_json()
        assert stock_of(product.id) == 7

    def test_idempotency_key_reuse_with_other_body_is_409(self, client, auth_headers, make_product, sale_payload):
        product = make_product(stock=10)
        headers = {**auth_headers, "Idempotency-Key": "pos-1-0002"}

        client.post("/api/transactions", json=sale_payload([(product, 1)]), headers=headers)
        response = client.post("/api/transactions", json=sale_payload([(product, 2)]), headers=headers)

        assert response.status_code == 409
        assert response.get_json()["code"] == "IDEMPOTENCY_CONFLICT"

    def test_checkout_is_audited(self, client, auth_headers, store, make_product, sale_payload, db_session):
        product = make_product(stock=10)

        response = client.post("/api/transactions", json=sale_payload([(product, 1)]), headers=auth_headers)

        entry = db_session.query(AuditLog).filter_by(table_name="transactions", action="CREATE").one()
        assert entry.store_id == store.id
        assert entry.user_ref == "kasir-1"
        assert entry.record_id == str(response.get_json()["id"])


class TestReadTransactions:
    def test_get_includes_items(self, client, auth_headers, make_product, sale_payload):
        product = make_product(stock=10)
        created = client.post(
            "/api/transactions", json=sale_payload([(product, 2)]), headers=auth_headers
        ).get_json()

        response = client.get(f"/api/transactions/{created['id']}", headers=auth_headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body["invoice_number"] == created["invoice_number"]
        assert body["status"] == "completed"
        assert [item["quantity"] for item in body["items"]] == [2]

    def test_get_missing_is_404(self, client, auth_headers):
        response = client.get("/api/transactions/4242", headers=auth_headers)
        assert response.status_code == 404
        assert response.get_json()["code"] == "TRANSACTION_NOT_FOUND"

    def test_list_is_paginated(self, client, auth_headers, make_product, sale_payload):
        product = make_product(stock=10)
        for _ in range(3):
            client.post("/api/transactions", json=sale_payload([(product, 1)]), headers=auth_headers)

        response = client.get("/api/transactions?page=1&limit=2", headers=auth_headers)

        body = response.get_json()
        assert response.status_code == 200
        assert body["total"] == 3
        assert body["limit"] == 2
        assert body["total_pages"] == 2
        assert len(body["items"]) == 2
        assert all(row["item_count"] == 1 for row in body["items"])

    def test_list_date_filter_includes_whole_end_day(self, client, auth_headers, make_product, sale_payload, db_session):
        product = make_product(stock=10)
        created = client.post(
            "/api/transactions", json=sale_payload([(product, 1)]), headers=auth_headers
        ).get_json()
        day = db_session.get(Transaction, created["id"]).created_at.date().isoformat()

        response = client.get(f"/api/transactions?from={day}&to={day}", headers=auth_headers)

        assert [row["id"] for row in response.get_json()["items"]] == [created["id"]]

    def test_list_bad_date_is_400(self, client, auth_headers):
        response = client.get("/api/transactions?from=yesterday", headers=auth_headers)
        assert response.status_code == 400


class TestVoidEndpoints:
    @pytest.mark.parametrize("method", ["patch", "delete"])
    def test_non_object_body_is_400(self, client, auth_headers, make_product, sale_payload, stock_of, method):
        product = make_product(stock=10)
        created = client.post(
            "/api/transactions", json=sale_payload([(product, 3)]), headers=auth_headers
        ).get_json()

        response = getattr(client, method)(
            f"/api/transactions/{created['id']}", json=["voided"], headers=auth_headers
        )

        assert response.status_code == 400
        assert response.get_json()["code"] == "VALIDATION_ERROR"
        assert stock_of(product.id) == 7

    def test_patch_voids_and_restores_stock(self, client, auth_headers, make_product, sale_payload, stock_of):
        product = make_product(stock=10)
        created = client.post(
            "/api/transactions", json=sale_payload([(product, 10)]), headers=auth_headers
        ).get_json()
        assert stock_of(product.id) == 0

        response = client.patch(
            f"/api/transactions/{created['id']}",
            json={"status": "voided", "reason": "pelanggan batal"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "voided"
        assert body["invoice_number"] == created["invoice_number"]
        assert stock_of(product.id) == 10

    def test_second_void_is_400(self, client, auth_headers, make_product, sale_payload, stock_of):
        product = make_product(stock=10)
        created = client.post(
            "/api/transactions", json=sale_payload([(product, 3)]), headers=auth_headers
        ).get_json()
        client.delete(f"/api/transactions/{created['id']}", headers=auth_headers)

        response = client.delete(f"/api/transactions/{created['id']}", headers=auth_headers)

        assert response.status_code == 400
        body = response.get_json()
        assert body["code"] == "ALREADY_VOIDED"
        assert body["error"] == "Transaction already voided"
        assert stock_of(product.id) == 10

    def test_patch_other_status_is_400(self, client, auth_headers, make_product, sale_payload):
        product = make_product(stock=10)
        created = client.post(
            "/api/transactions", json=sale_payload([(product, 1)]), headers=auth_headers
        ).get_json()

        response = client.patch(
            f"/api/transactions/{created['id']}", json={"status": "completed"}, headers=auth_headers
        )

        assert response.status_code == 400

    def test_void_is_audited_with_old_status(self, client, auth_headers, make_product, sale_payload, db_session):
        product = make_product(stock=10)
        created = client.post(
            "/api/transactions", json=sale_payload([(product, 1)]), headers=auth_headers
        ).get_json()

        client.patch(
            f"/api/transactions/{created['id']}",
            json={"status": "voided", "reason": "dobel"},
            headers=auth_headers,
        )

        entry = db_session.query(AuditLog).filter_by(action="VOID").one()
        assert entry.old_values == {"status": "completed"}
        assert entry.new_values["status"] == "voided"
        assert entry.new_values["void_reason"] == "dobel"
