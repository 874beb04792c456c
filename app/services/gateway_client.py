# app/services/gateway_client.py
import base64
import hashlib
import hmac
import io
from dataclasses import dataclass
from decimal import Decimal

import qrcode
import requests
from requests import RequestException

from app.domain.errors import GatewayError
from app.utils.settings import (
    GATEWAY_API_URL,
    GATEWAY_API_KEY,
    GATEWAY_CURRENCY,
    GATEWAY_PAYMENT_METHOD,
)
from app.utils.retry import http_retry
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class QrImage:
    url: str  # http(s) albo data URI, gotowe do wyswietlenia


@dataclass(frozen=True)
class QrRawPayload:
    data: str  # surowy ciag (np. EMV), trzeba wyrenderowac


@dataclass(frozen=True)
class GatewayPayment:
    payment_id: str | None
    url: str | None
    qr: QrImage


def classify_qr(value: str) -> QrImage | QrRawPayload:
    if value.startswith(("http://", "https://", "data:")):
        return QrImage(value)
    return QrRawPayload(value)


def render_qr(raw: QrRawPayload) -> QrImage:
    img = qrcode.make(raw.data, box_size=10, border=2)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return QrImage(f"data:image/png;base64,{encoded}")


def resolve_qr(data: dict) -> QrImage | None:
    """
    Bramka zwraca QR w roznych polach i formatach.
    Rozstrzygamy raz, tutaj, dalej zawsze idzie gotowy obrazek.
    """
    qr_data = data.get("qr_code_data") or {}
    raw_value = qr_data.get("qr_code") or qr_data.get("qr_code_url") or data.get("qr_code")

    if raw_value:
        variant = classify_qr(raw_value)
    elif data.get("url"):
        # brak QR, kodujemy link do strony platnosci
        variant = QrRawPayload(data["url"])
    else:
        return None

    if isinstance(variant, QrRawPayload):
        variant = render_qr(variant)
    return variant


def signing_string(fields: dict) -> str:
    # key1value1key2value2..., klucze rosnaco, bez pustych wartosci i bez hmac
    filtered = {
        k: v for k, v in fields.items()
        if k != "hmac" and v not in (None, "", "undefined")
    }
    return "".join(f"{k}{filtered[k]}" for k in sorted(filtered))


def sign_fields(fields: dict, salt: str) -> str:
    return hmac.new(
        salt.encode("utf-8"),
        signing_string(fields).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_signature(fields: dict, received: str, salt: str) -> bool:
    if not salt:
        logger.error("Gateway salt is not configured, cannot verify webhook signature")
        return False
    return hmac.compare_digest(sign_fields(fields, salt), received)


class GatewayClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: int = 10,
    ):
        self.base_url = (base_url or GATEWAY_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else GATEWAY_API_KEY
        self.timeout = timeout

    @http_retry()
    def _post(self, path: str, payload: dict) -> requests.Response:
        url = f"{self.base_url}{path}"
        logger.info(f"GatewayClient POST {url}")

        return requests.post(
            url,
            json=payload,
            headers={
                "X-BUSINESS-API-KEY": self.api_key,
                "X-Requested-With": "XMLHttpRequest",
            },
            timeout=self.timeout,
        )

    def create_payment_request(
        self,
        amount: Decimal,
        session_id: str,
        customer_name: str | None = None,
        webhook_url: str | None = None,
    ) -> GatewayPayment:
        payload = {
            "amount": f"{Decimal(str(amount)):.2f}",
            "currency": GATEWAY_CURRENCY,
            "payment_methods": [GATEWAY_PAYMENT_METHOD],
            "generate_qr": True,
            "reference_number": session_id,
            "send_email": "false",
            "send_sms": "false",
        }
        if customer_name:
            payload["name"] = customer_name
        if webhook_url:
            payload["webhook"] = webhook_url

        try:
            resp = self._post("/payment-requests", payload)
        except RequestException as e:
            raise GatewayError(f"Gateway request failed: {e}") from e

        if not resp.ok:
            raise GatewayError(f"Gateway error {resp.status_code}: {resp.text}")

        try:
            data = resp.json()
        except ValueError as e:
            raise GatewayError("Gateway returned a non-JSON response") from e

        qr = resolve_qr(data)
        if qr is None:
            raise GatewayError("Gateway returned no usable QR payload")

        return GatewayPayment(payment_id=data.get("id"), url=data.get("url"), qr=qr)
