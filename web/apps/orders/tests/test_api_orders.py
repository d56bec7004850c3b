"""API tests for merchant order endpoints and the payment endpoints."""

import csv
import io
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.orders.models import OrderModel, PaymentModel

SESSIONS_URL = "/api/checkout/sessions/"
COMPLETE_URL = "/api/checkout/sessions/{sid}/complete/"
LIST_URL = "/api/orders/"
DETAIL_URL = "/api/orders/{oid}/"
STATUS_URL = "/api/orders/{oid}/status/"
BULK_URL = "/api/orders/bulk-status/"
PAYMENT_URL = "/api/orders/{ref}/payment/"
PROOFS_URL = "/api/orders/{oid}/payment/proofs/"
VERIFY_URL = "/api/payments/{pid}/verify/"
PENDING_URL = "/api/payments/pending/"
STATS_URL = "/api/payments/stats/"

CONTACT = {"name": "Raj", "email": "raj@example.com", "phone": "87654321"}
PROOF = {
    "file_url": "https://files.example.com/p/1.jpg",
    "file_name": "1.jpg",
    "file_size": 2048,
    "mime_type": "image/jpeg",
}


@pytest.fixture
def place(client, merchant, product):
    def _place():
        sid = client.post(
            SESSIONS_URL,
            {"merchant_id": str(merchant.id), "items": [{"product_id": str(product.id), "quantity": 1}]},
            content_type="application/json",
        ).json()["session_id"]
        return client.post(COMPLETE_URL.format(sid=sid), {"contact": CONTACT}, content_type="application/json").json()

    return _place


@pytest.mark.django_db
def test_merchant_endpoints_require_identity(client, merchant):
    r = client.get(LIST_URL)
    assert r.status_code == 401
    r = client.get(LIST_URL, HTTP_X_USER_ID="cust-1")
    assert r.status_code == 403


@pytest.mark.django_db
def test_list_orders_is_scoped_and_paginated(client, place, merchant_headers, make_merchant):
    for _ in range(3):
        place()
    r = client.get(LIST_URL, {"page_size": 2}, **merchant_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 3
    assert len(body["results"]) == 2
    assert {"id", "order_number", "status", "total"} <= set(body["results"][0])

    other = make_merchant(business_name="Other")
    r = client.get(LIST_URL, HTTP_X_USER_ID="staff-9", HTTP_X_MERCHANT_ID=str(other.id))
    assert r.json()["count"] == 0


@pytest.mark.django_db
def test_list_orders_filters(client, place, merchant_headers):
    receipt = place()
    place()
    client.post(STATUS_URL.format(oid=receipt["order_id"]), {"status": "CONFIRMED"}, content_type="application/json", **merchant_headers)

    r = client.get(LIST_URL, {"status": "CONFIRMED"}, **merchant_headers)
    assert [o["id"] for o in r.json()["results"]] == [receipt["order_id"]]
    r = client.get(LIST_URL, {"search": receipt["order_number"]}, **merchant_headers)
    assert r.json()["count"] == 1


@pytest.mark.django_db
def test_order_detail(client, place, merchant_headers, make_merchant):
    receipt = place()
    r = client.get(DETAIL_URL.format(oid=receipt["order_id"]), **merchant_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["order_number"] == receipt["order_number"]
    assert body["items"][0]["quantity"] == 1
    assert body["payment"]["status"] == "PENDING"
    assert body["events"][0]["event"] == "order_created"

    other = make_merchant(business_name="Other")
    r = client.get(DETAIL_URL.format(oid=receipt["order_id"]), HTTP_X_USER_ID="s", HTTP_X_MERCHANT_ID=str(other.id))
    assert r.status_code == 404


@pytest.mark.django_db
def test_status_update_and_illegal_transition(client, place, merchant_headers):
    oid = place()["order_id"]
    r = client.post(STATUS_URL.format(oid=oid), {"status": "DELIVERED"}, content_type="application/json", **merchant_headers)
    assert r.status_code == 400
    assert r.json() == {
        "detail": "INVALID_STATUS_TRANSITION",
        "message": "Invalid status transition: PENDING -> DELIVERED for pickup orders",
    }

    r = client.post(STATUS_URL.format(oid=oid), {"status": "CANCELLED", "reason": "closed early"}, content_type="application/json", **merchant_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "CANCELLED"
    assert body["metadata"]["cancellation_reason"] == "closed early"
    assert body["cancelled_at"] is not None

    r = client.post(STATUS_URL.format(oid=oid), {"status": "NOT_A_STATUS"}, content_type="application/json", **merchant_headers)
    assert r.status_code == 400


@pytest.mark.django_db
def test_bulk_status(client, place, merchant_headers):
    ids = [place()["order_id"] for _ in range(2)]
    r = client.post(BULK_URL, {"order_ids": ids, "status": "CONFIRMED"}, content_type="application/json", **merchant_headers)
    assert r.status_code == 200
    assert r.json()["success_count"] == 2

    r = client.post(BULK_URL, {"order_ids": ids, "status": "CONFIRMED"}, content_type="application/json", **merchant_headers)
    assert r.status_code == 400

    r = client.post(BULK_URL, {"order_ids": [], "status": "CONFIRMED"}, content_type="application/json", **merchant_headers)
    assert r.status_code == 400


@pytest.mark.django_db
def test_payment_lookup_by_id_and_number(client, place):
    receipt = place()
    for ref in (receipt["order_id"], receipt["order_number"]):
        r = client.get(PAYMENT_URL.format(ref=ref))
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "PENDING"
        assert body["amount"] == "5.00"
        assert body["payment_reference"] == receipt["payment_reference"]
        assert body["payment_info"]["merchant_name"] == "Kopi Corner"
        assert "54045.00" in body["payment_info"]["paynow_payload"]
        assert receipt["payment_reference"] in body["payment_info"]["paynow_payload"]
    assert client.get(PAYMENT_URL.format(ref="ORD-424242")).status_code == 404


@pytest.mark.django_db
def test_proof_upload_and_cap(client, place):
    oid = place()["order_id"]
    for n in range(3):
        r = client.post(PROOFS_URL.format(oid=oid), {**PROOF, "file_name": f"{n}.jpg"}, content_type="application/json")
        assert r.status_code == 201
        assert r.json()["upload_number"] == n + 1
    r = client.post(PROOFS_URL.format(oid=oid), PROOF, content_type="application/json")
    assert r.status_code == 400
    assert r.json() == {
        "detail": "MAX_PAYMENT_PROOFS",
        "message": "Maximum number of payment proofs (3) already uploaded.",
    }


@pytest.mark.django_db
def test_proof_upload_validation(client, place):
    oid = place()["order_id"]
    for bad in ({"mime_type": "application/pdf"}, {"file_size": 6 * 1024 * 1024}, {"file_url": "ftp://x/y"}):
        r = client.post(PROOFS_URL.format(oid=oid), {**PROOF, **bad}, content_type="application/json")
        assert r.status_code == 400


@pytest.mark.django_db
def test_verify_flow(client, place, merchant_headers):
    receipt = place()
    client.post(PROOFS_URL.format(oid=receipt["order_id"]), PROOF, content_type="application/json")
    pid = PaymentModel.objects.get(order_id=receipt["order_id"]).id

    r = client.post(VERIFY_URL.format(pid=pid), {"verified": True}, content_type="application/json")
    assert r.status_code == 401
    r = client.post(VERIFY_URL.format(pid=pid), {"verified": True}, content_type="application/json", **merchant_headers)
    assert r.status_code == 200
    assert r.json()["message"] == "Payment verified successfully. Order confirmed."
    assert r.json()["payment"]["status"] == "COMPLETED"

    r = client.post(VERIFY_URL.format(pid=pid), {"verified": True}, content_type="application/json", **merchant_headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "PAYMENT_ALREADY_VERIFIED"

    detail = client.get(DETAIL_URL.format(oid=receipt["order_id"]), **merchant_headers).json()
    assert detail["status"] == "CONFIRMED"
    assert detail["payment_status"] == "COMPLETED"


@pytest.mark.django_db
def test_verify_other_merchants_payment_forbidden(client, place, make_merchant):
    receipt = place()
    pid = PaymentModel.objects.get(order_id=receipt["order_id"]).id
    other = make_merchant(business_name="Other")
    r = client.post(
        VERIFY_URL.format(pid=pid), {"verified": False}, content_type="application/json",
        HTTP_X_USER_ID="s", HTTP_X_MERCHANT_ID=str(other.id),
    )
    assert r.status_code == 403


@pytest.mark.django_db
def test_pending_and_stats(client, place, merchant_headers):
    a = place()
    place()
    pid = PaymentModel.objects.get(order_id=a["order_id"]).id
    client.post(VERIFY_URL.format(pid=pid), {"verified": True}, content_type="application/json", **merchant_headers)

    r = client.get(PENDING_URL, **merchant_headers)
    assert r.status_code == 200
    assert r.json()["count"] == 1
    assert r.json()["results"][0]["proof_count"] == 0

    r = client.get(STATS_URL, **merchant_headers)
    assert r.json() == {"pending": 1, "processing": 0, "completed": 1, "failed": 0, "revenue": "5.00"}


@pytest.mark.django_db
def test_health(client):
    r = client.get("/api/health/")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["components"]["notifications"]["circuit"] == "CLOSED"


EXPORT_URL = "/api/orders/export/"


def _csv_rows(response):
    return list(csv.reader(io.StringIO(response.content.decode("utf-8"))))


@pytest.mark.django_db
def test_export_csv(client, place, merchant_headers, make_merchant):
    first, second = place(), place()
    client.post(STATUS_URL.format(oid=second["order_id"]), {"status": "CONFIRMED"}, content_type="application/json", **merchant_headers)

    r = client.get(EXPORT_URL, **merchant_headers)
    assert r.status_code == 200
    assert r["Content-Type"].startswith("text/csv")
    assert "attachment" in r["Content-Disposition"]
    rows = _csv_rows(r)
    assert rows[0][:4] == ["Order Number", "Date", "Time", "Status"]
    assert [row[0] for row in rows[1:]] == [second["order_number"], first["order_number"]]
    header = rows[0]
    row = dict(zip(header, rows[1]))
    assert row["Status"] == "CONFIRMED"
    assert row["Items"] == "Kaya Toast x1"
    assert row["Total"] == "5.00"
    assert row["Payment Reference"] == second["payment_reference"]

    only_pending = _csv_rows(client.get(EXPORT_URL, {"status": "PENDING"}, **merchant_headers))
    assert [row[0] for row in only_pending[1:]] == [first["order_number"]]

    picked = _csv_rows(client.get(EXPORT_URL, {"ids": first["order_id"], "status": "CONFIRMED"}, **merchant_headers))
    assert [row[0] for row in picked[1:]] == [first["order_number"]]

    today = timezone.localdate()
    dated = _csv_rows(client.get(EXPORT_URL, {"date_from": today.isoformat(), "date_to": today.isoformat()}, **merchant_headers))
    assert len(dated) == 3

    other = make_merchant(business_name="Other")
    r = client.get(EXPORT_URL, HTTP_X_USER_ID="staff-9", HTTP_X_MERCHANT_ID=str(other.id))
    assert r.status_code == 404
    assert r.json()["detail"] == "NO_ORDERS_TO_EXPORT"


@pytest.mark.django_db
def test_export_validation_and_access(client, place, merchant_headers):
    place()
    assert client.get(EXPORT_URL).status_code == 401
    r = client.get(EXPORT_URL, {"date_from": "2025-03-02", "date_to": "2025-03-01"}, **merchant_headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"
    r = client.get(EXPORT_URL, {"status": "LOST"}, **merchant_headers)
    assert r.status_code == 400
    future = (timezone.localdate() + timedelta(days=1)).isoformat()
    assert client.get(EXPORT_URL, {"date_from": future}, **merchant_headers).status_code == 404


@pytest.mark.django_db
def test_export_neutralises_spreadsheet_formulas(client, place, merchant_headers):
    receipt = place()
    OrderModel.objects.filter(id=receipt["order_id"]).update(customer_name="=HYPERLINK(\"http://x\")")
    rows = _csv_rows(client.get(EXPORT_URL, **merchant_headers))
    row = dict(zip(rows[0], rows[1]))
    assert row["Customer Name"] == "'=HYPERLINK(\"http://x\")"
