# app/api/routers/webhooks.py
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_change_feed, get_notifier
from app.data.database import get_db
from app.domain.errors import NotFoundError, SignatureError
from app.services.payment_service import PaymentService
from app.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _coerce(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        # bramka podpisuje 4.0 jako "4"
        return str(int(value))
    return str(value)


async def _read_fields(request: Request) -> dict:
    #json albo form-urlencoded, zalezy od konfiguracji bramki
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        data = await request.json()
        if not isinstance(data, dict):
            raise ValueError("Webhook body must be an object")
        return {k: _coerce(v) for k, v in data.items()}

    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


@router.get("/payment")
def webhook_liveness():
    return {"status": "ok", "endpoint": "payment-webhook"}


@router.post("/payment")
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    change_feed=Depends(get_change_feed),
    notifier=Depends(get_notifier),
):
    try:
        fields = await _read_fields(request)
    except ValueError as e:
        logger.error(f"Unreadable webhook body: {e}")
        return JSONResponse({"error": "Invalid payload"}, status_code=400)

    logger.info(
        f"Payment webhook received: status={fields.get('status')} "
        f"reference={fields.get('reference_number')} request={fields.get('payment_request_id')}"
    )

    svc = PaymentService(db, change_feed=change_feed, notifier=notifier)
    try:
        return await run_in_threadpool(svc.handle_webhook, fields)
    except SignatureError:
        return JSONResponse({"error": "Invalid signature"}, status_code=401)
    except NotFoundError:
        return JSONResponse({"error": "Payment session not found"}, status_code=404)
    except Exception:
        logger.exception("Error processing payment webhook")
        return JSONResponse({"error": "Internal server error"}, status_code=500)
