from decimal import Decimal

import pytest
import requests

from app.domain.errors import GatewayError
from app.services import gateway_client
from app.services.gateway_client import (
    GatewayClient,
    QrImage,
    QrRawPayload,
    classify_qr,
    resolve_qr,
    sign_fields,
    signing_string,
    verify_signature,
)


class FakeResponse:
    def __init__(self, status_code=201, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


@pytest.fixture
def captured(monkeypatch):
    calls = []
    state = {"response": FakeResponse(data={
        "id": "req_123",
        "url": "https://gateway.test/pay/req_123",
        "qr_code_data": {"qr_code": "https://gateway.test/qr/req_123.png"},
    })}

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers})
        if isinstance(state["response"], Exception):
            raise state["response"]
        return state["response"]

    monkeypatch.setattr(gateway_client.requests, "post", fake_post)
    return calls, state


def test_classify_qr_variants():
    assert classify_qr("https://x.test/qr.png") == QrImage("https://x.test/qr.png")
    assert classify_qr("data:image/png;base64,AAA") == QrImage("data:image/png;base64,AAA")
    assert classify_qr("00020101021226") == QrRawPayload("00020101021226")


def test_resolve_qr_keeps_image_urls():
    assert resolve_qr({"qr_code_data": {"qr_code_url": "https://x.test/a.png"}}) == QrImage("https://x.test/a.png")
    assert resolve_qr({"qr_code": "data:image/png;base64,BBB"}) == QrImage("data:image/png;base64,BBB")


def test_resolve_qr_renders_raw_payload():
    qr = resolve_qr({"qr_code_data": {"qr_code": "00020101021226580009SG.PAYNOW"}})
    assert qr.url.startswith("data:image/png;base64,")
    assert len(qr.url) > 100


def test_resolve_qr_falls_back_to_hosted_page():
    qr = resolve_qr({"url": "https://gateway.test/pay/req_1"})
    assert qr.url.startswith("data:image/png;base64,")


def test_resolve_qr_without_anything():
    assert resolve_qr({"id": "req_1"}) is None


def test_signing_string_sorted_without_empty_and_hmac():
    fields = {
        "status": "completed",
        "amount": "4.20",
        "phone": "",
        "reference_number": "abc",
        "hmac": "deadbeef",
        "currency": "SGD",
        "extra": "undefined",
    }
    assert signing_string(fields) == "amount4.20currencySGDreference_numberabcstatuscompleted"


def test_verify_signature():
    fields = {"amount": "4.20", "status": "completed", "reference_number": "abc"}
    signature = sign_fields(fields, "salt")

    assert verify_signature({**fields, "hmac": signature}, signature, "salt")
    assert not verify_signature({**fields, "amount": "0.01"}, signature, "salt")
    assert not verify_signature(fields, signature, "other-salt")
    assert not verify_signature(fields, signature, "")


def test_create_payment_request_payload(captured):
    calls, _ = captured
    client = GatewayClient(base_url="https://gateway.test/v1/", api_key="key-1")

    payment = client.create_payment_request(
        Decimal("4.2"), "session-1", customer_name="AB", webhook_url="https://shop.test/webhooks/payment"
    )

    assert calls[0]["url"] == "https://gateway.test/v1/payment-requests"
    assert calls[0]["headers"]["X-BUSINESS-API-KEY"] == "key-1"
    body = calls[0]["json"]
    assert body["amount"] == "4.20"
    assert body["reference_number"] == "session-1"
    assert body["generate_qr"] is True
    assert body["name"] == "AB"
    assert body["webhook"] == "https://shop.test/webhooks/payment"
    assert body["send_email"] == "false" and body["send_sms"] == "false"
    assert len(body["payment_methods"]) == 1

    assert payment.payment_id == "req_123"
    assert payment.url == "https://gateway.test/pay/req_123"
    assert payment.qr == QrImage("https://gateway.test/qr/req_123.png")


def test_create_payment_request_omits_empty_name(captured):
    calls, _ = captured
    GatewayClient(base_url="https://gateway.test/v1").create_payment_request(Decimal("1"), "s")
    assert "name" not in calls[0]["json"]
    assert "webhook" not in calls[0]["json"]


def test_non_2xx_is_gateway_error(captured):
    _, state = captured
    state["response"] = FakeResponse(status_code=422, text="invalid amount")

    with pytest.raises(GatewayError, match="422"):
        GatewayClient(base_url="https://gateway.test/v1").create_payment_request(Decimal("1"), "s")


def test_response_without_qr_is_gateway_error(captured):
    _, state = captured
    state["response"] = FakeResponse(data={"id": "req_1"})

    with pytest.raises(GatewayError):
        GatewayClient(base_url="https://gateway.test/v1").create_payment_request(Decimal("1"), "s")


def test_connection_error_is_retried_then_gateway_error(captured):
    calls, state = captured
    state["response"] = requests.ConnectionError("down")

    with pytest.raises(GatewayError):
        GatewayClient(base_url="https://gateway.test/v1").create_payment_request(Decimal("1"), "s")
    assert len(calls) == 3
