from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.data.models.order import OrderModel
from app.repos.order_repo import OrderRepo
from app.domain.errors import SignatureError
from app.repos.payment_repo import PaymentRepo
from app.services.gateway_client import sign_fields
from app.services.payment_service import PaymentService

from conftest import SALT, make_line


def _place_qr_order(client, base="4.20"):
    resp = client.post("/orders/", json={
        "customer_initials": "AB",
        "payment_method": "qr",
        "lines": [make_line("hojicha", base=base).model_dump(mode="json")],
    })
    assert resp.status_code == 201
    return resp.json()


def _signed(fields):
    return {**fields, "hmac": sign_fields(fields, SALT)}


def _payload(session_id, status="completed", **extra):
    fields = {
        "payment_id": "pay_1",
        "payment_request_id": "req_1",
        "amount": "4.20",
        "currency": "SGD",
        "status": status,
        "reference_number": session_id,
    }
    fields.update(extra)
    return fields


def test_liveness(client):
    resp = client.get("/webhooks/payment")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_webhook_confirms_session_and_pays_order(client, db, feed):
    placed = _place_qr_order(client)

    resp = client.post("/webhooks/payment", json=_signed(_payload(placed["session_id"])))

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "session_id": placed["session_id"], "status": "confirmed"}

    ps = PaymentRepo(db).get_by_session_id(placed["session_id"])
    assert ps.status == "confirmed"
    assert ps.confirmed_at is not None
    assert ps.gateway_payment_id == "req_1"
    assert db.get(OrderModel, placed["order_id"]).status == "paid"

    tables = [(e["table"], e["new"]["status"]) for e in feed.published if e["type"] == "UPDATE"]
    assert tables == [("payment_sessions", "confirmed"), ("orders", "paid")]


def test_duplicate_webhook_is_acknowledged_without_writes(client, db, feed):
    placed = _place_qr_order(client)
    payload = _signed(_payload(placed["session_id"]))

    client.post("/webhooks/payment", json=payload)
    confirmed_at = PaymentRepo(db).get_by_session_id(placed["session_id"]).confirmed_at
    published = len(feed.published)

    resp = client.post("/webhooks/payment", json=payload)

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "already_processed": True}
    assert len(feed.published) == published
    db.expire_all()
    assert PaymentRepo(db).get_by_session_id(placed["session_id"]).confirmed_at == confirmed_at


@pytest.mark.parametrize("field,value", [
    ("amount", "0.01"),
    ("status", "succeeded"),
    ("reference_number", "someone-else"),
])
def test_tampered_webhook_is_rejected(client, db, field, value):
    placed = _place_qr_order(client)
    payload = _signed(_payload(placed["session_id"]))
    payload[field] = value

    resp = client.post("/webhooks/payment", json=payload)

    assert resp.status_code == 401
    assert PaymentRepo(db).get_by_session_id(placed["session_id"]).status == "pending"
    assert db.get(OrderModel, placed["order_id"]).status == "pending"


def test_succeeded_status_variant_is_accepted(client, db):
    placed = _place_qr_order(client)

    resp = client.post("/webhooks/payment", json=_signed(_payload(placed["session_id"], status="succeeded")))

    assert resp.status_code == 200
    assert db.get(OrderModel, placed["order_id"]).status == "paid"


def test_non_success_status_is_acknowledged_and_dropped(client, db, feed):
    placed = _place_qr_order(client)
    published = len(feed.published)

    resp = client.post("/webhooks/payment", json=_signed(_payload(placed["session_id"], status="failed")))

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert PaymentRepo(db).get_by_session_id(placed["session_id"]).status == "pending"
    assert len(feed.published) == published


def test_unknown_session_is_404(client):
    resp = client.post("/webhooks/payment", json=_signed(_payload("no-such-session", payment_request_id="req_x")))
    assert resp.status_code == 404


def test_lookup_falls_back_to_gateway_payment_id(client, db):
    placed = _place_qr_order(client)
    client.post("/payments/", json={
        "amount": "4.20",
        "session_id": placed["session_id"],
        "order_id": placed["order_id"],
        "customer_name": "AB",
    })
    gateway_id = PaymentRepo(db).get_by_session_id(placed["session_id"]).gateway_payment_id

    fields = _payload("undefined", payment_request_id=gateway_id)
    resp = client.post("/webhooks/payment", json=_signed(fields))

    assert resp.status_code == 200
    db.expire_all()
    assert db.get(OrderModel, placed["order_id"]).status == "paid"


def test_form_encoded_webhook(client, db):
    placed = _place_qr_order(client)

    resp = client.post("/webhooks/payment", data=_signed(_payload(placed["session_id"])))

    assert resp.status_code == 200
    assert db.get(OrderModel, placed["order_id"]).status == "paid"


def test_json_values_are_coerced_to_strings_before_verification(client, db):
    placed = _place_qr_order(client)
    fields = _payload(placed["session_id"], amount="4.2")
    payload = _signed(fields)
    payload["amount"] = 4.2

    resp = client.post("/webhooks/payment", json=payload)

    assert resp.status_code == 200


def test_unsigned_webhook_accepted_in_sandbox(client, db):
    placed = _place_qr_order(client)

    resp = client.post("/webhooks/payment", json=_payload(placed["session_id"]))

    assert resp.status_code == 200
    assert db.get(OrderModel, placed["order_id"]).status == "paid"


def test_unsigned_webhook_rejected_outside_sandbox(db):
    svc = PaymentService(db, salt=SALT, sandbox=False)
    with pytest.raises(SignatureError):
        svc.handle_webhook(_payload("whatever"))


def test_order_not_pending_is_reported_but_webhook_succeeds(client, db, notifier):
    placed = _place_qr_order(client)
    order = db.get(OrderModel, placed["order_id"])
    order.status = "cancelled"
    db.commit()

    resp = client.post("/webhooks/payment", json=_signed(_payload(placed["session_id"])))

    assert resp.status_code == 200
    assert resp.json()["status"] == "confirmed"
    assert PaymentRepo(db).get_by_session_id(placed["session_id"]).status == "confirmed"
    assert notifier.reports == [(placed["session_id"], placed["order_id"], "order status is cancelled")]


def test_late_webhook_confirms_expired_session(client, db):
    placed = _place_qr_order(client)
    ps = PaymentRepo(db).get_by_session_id(placed["session_id"])
    ps.status = "expired"
    db.commit()

    resp = client.post("/webhooks/payment", json=_signed(_payload(placed["session_id"])))

    assert resp.status_code == 200
    db.expire_all()
    assert db.get(OrderModel, placed["order_id"]).status == "paid"
    assert PaymentRepo(db).get_by_session_id(placed["session_id"]).amount == Decimal("4.20")


def test_failed_order_update_still_acknowledges_and_reports(client, db, notifier, monkeypatch):
    placed = _place_qr_order(client)

    def broken_update(self, order_id, expected_status, new_data):
        raise OperationalError("UPDATE orders", {}, Exception("database is locked"))

    monkeypatch.setattr(OrderRepo, "update_order_status", broken_update)

    resp = client.post("/webhooks/payment", json=_signed(_payload(placed["session_id"])))

    assert resp.status_code == 200
    assert resp.json()["status"] == "confirmed"
    assert PaymentRepo(db).get_by_session_id(placed["session_id"]).status == "confirmed"
    assert db.get(OrderModel, placed["order_id"]).status == "pending"

    [(session_id, order_id, reason)] = notifier.reports
    assert (session_id, order_id) == (placed["session_id"], placed["order_id"])
    assert reason.startswith("order update failed")


def test_integral_float_is_signed_without_fraction(client, db):
    placed = _place_qr_order(client, base="4.00")
    payload = _signed(_payload(placed["session_id"], amount="4"))
    payload["amount"] = 4.0

    resp = client.post("/webhooks/payment", json=payload)

    assert resp.status_code == 200
    assert db.get(OrderModel, placed["order_id"]).status == "paid"
