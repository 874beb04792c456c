# app/api/routers/payments.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.deps import get_change_feed, get_gateway, get_notifier
from app.data.database import get_db
from app.domain.errors import GatewayError, NotFoundError, PaymentSessionClosed, ValidationError
from app.domain.schemas import PaymentRequestIn, PaymentRequestOut, PaymentSessionOut
from app.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/", response_model=PaymentRequestOut)
def request_qr_payment(
    payload: PaymentRequestIn,
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    change_feed=Depends(get_change_feed),
    notifier=Depends(get_notifier),
):
    """
    Tworzy płatność QR w bramce dla istniejącej sesji.
    Ponowne wywołanie po błędzie bramki to ręczny retry.
    """
    svc = PaymentService(db, gateway=gateway, change_feed=change_feed, notifier=notifier)
    try:
        return svc.request_qr_payment(
            payload.amount, payload.session_id, payload.order_id, payload.customer_name
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PaymentSessionClosed as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/{session_id}", response_model=PaymentSessionOut)
def get_payment_session(session_id: str, db: Session = Depends(get_db)):
    svc = PaymentService(db)
    try:
        return svc.get_session(session_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
