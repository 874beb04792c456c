# app/api/routers/orders.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.deps import get_change_feed
from app.data.database import get_db
from app.domain.errors import InvalidTransition, NotFoundError, PersistenceError, ValidationError
from app.domain.schemas import OrderCreate, OrderPlacedOut, OrderOut, StatusChangeIn
from app.services.order_service import OrderService, VISIBLE_STATUSES
from app.utils.settings import QUEUE_WINDOW_HOURS

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session, change_feed):
    return OrderService(db, change_feed)


@router.post("/", response_model=OrderPlacedOut, status_code=201)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    change_feed=Depends(get_change_feed),
):
    """
    Składa zamówienie z koszyka kiosku.
    Gotówka od razu jako paid, QR jako pending z sesją płatności.
    """
    svc = get_service(db, change_feed)
    try:
        return svc.create_order(payload.lines, payload.customer_initials, payload.payment_method)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/queue", response_model=List[OrderOut])
def get_queue(
    status: List[str] = Query(list(VISIBLE_STATUSES)),
    window_hours: int = Query(QUEUE_WINDOW_HOURS, gt=0),
    db: Session = Depends(get_db),
):
    """
    Zamówienia widoczne dla obsługi, od najstarszych.
    """
    svc = get_service(db, None)
    try:
        return svc.list_queue(status, window_hours)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, db: Session = Depends(get_db)):
    svc = get_service(db, None)
    try:
        return svc.get_order(order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{order_id}/status")
def advance_order_status(
    order_id: int,
    payload: StatusChangeIn,
    db: Session = Depends(get_db),
    change_feed=Depends(get_change_feed),
):
    svc = get_service(db, change_feed)
    try:
        order = svc.advance_order_status(order_id, payload.status)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "id": order["id"], "status": order["status"]}
