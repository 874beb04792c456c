# app/services/order_service.py
import re
import uuid
from datetime import datetime, timezone, timedelta
from typing import Iterable, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.data.models.order import OrderModel
from app.data.models.order_item import OrderItemModel
from app.data.models.payment_session import PaymentSessionModel, QR_PLACEHOLDER
from app.domain.errors import ValidationError, InvalidTransition, NotFoundError, PersistenceError
from app.domain.money import compute_line_total, ZERO
from app.domain.schemas import LineItem
from app.repos.order_repo import OrderRepo
from app.utils.settings import PAYMENT_SESSION_TTL_SECONDS, QUEUE_WINDOW_HOURS
from app.utils.logging import get_logger

logger = get_logger(__name__)

ORDER_STATUSES = ("pending", "paid", "preparing", "completed", "cancelled")
VISIBLE_STATUSES = ("paid", "preparing", "completed")
PAYMENT_METHODS = ("cash", "qr")

# jedyne dozwolone przejscia wykonywane przez obsluge
ALLOWED_TRANSITIONS = {
    "paid": {"preparing"},
    "preparing": {"completed"},
}

_INITIALS_RE = re.compile(r"^[A-Za-z]{2,3}$")


def validate_initials(value: str) -> str:
    initials = (value or "").strip()
    if not _INITIALS_RE.match(initials):
        raise ValidationError("Inicjaly musza miec 2-3 litery")
    return initials.upper()


def order_row(order: OrderModel) -> dict:
    """Wiersz zamowienia bez pozycji, tak jak idzie przez change feed."""
    return {
        "id": order.id,
        "session_id": order.session_id,
        "customer_initials": order.customer_initials,
        "payment_method": order.payment_method,
        "total_amount": order.total_amount,
        "status": order.status,
        "created_at": order.created_at,
        "completed_at": order.completed_at,
    }


def order_to_dict(order: OrderModel) -> dict:
    data = order_row(order)
    data["items"] = [
        {
            "id": i.id,
            "menu_item_id": i.menu_item_id,
            "menu_item_name": i.menu_item_name,
            "quantity": i.quantity,
            "customizations_snapshot": i.customizations_snapshot,
            "line_total": i.line_total,
        }
        for i in order.items
    ]
    return data


class OrderService:
    """
    Serwis odpowiedzialny za domenę zamówień.
    -skladanie zamowienia z koszyka kiosku (command)
    -zmiana statusu przez obsluge, tylko wg ALLOWED_TRANSITIONS (command)
    -odczyt zamowienia i kolejki (query)
    """

    def __init__(self, db: Session, change_feed=None):
        self.db = db
        self.repo = OrderRepo(db)
        self.change_feed = change_feed

    def _publish(self, event_type: str, order: OrderModel):
        if self.change_feed is not None:
            self.change_feed.publish("orders", event_type, new=order_row(order))

    #commands
    def create_order(self, lines: List[LineItem], customer_initials: str, payment_method: str) -> dict:
        """
        Use Case: Złożenie zamówienia z koszyka.

        1. Walidacja (inicjaly, metoda, niepusty koszyk)
        2. Przeliczenie sum po stronie serwera
        3. Zamowienie + pozycje (+ sesja platnosci dla QR) w jednej transakcji
        """
        initials = validate_initials(customer_initials)

        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Nieznana metoda platnosci: {payment_method}")

        if not lines:
            raise ValidationError("Koszyk jest pusty")

        session_id = uuid.uuid4().hex
        items = []
        total = ZERO

        for line in lines:
            if line.quantity <= 0:
                raise ValidationError("Ilosc musi byc wieksza niz 0")

            line_total = compute_line_total(
                line.menu_item.base_price,
                [c.price_modifier for c in line.customizations],
                line.quantity,
            )
            total += line_total
            items.append(
                OrderItemModel(
                    menu_item_id=line.menu_item.id,
                    menu_item_name=line.menu_item.name,
                    quantity=line.quantity,
                    customizations_snapshot=[c.model_dump(mode="json") for c in line.customizations],
                    line_total=line_total,
                )
            )

        order = OrderModel(
            session_id=session_id,
            customer_initials=initials,
            payment_method=payment_method,
            total_amount=total,
            status="paid" if payment_method == "cash" else "pending",
        )

        expires_at = None
        if payment_method == "qr":
            # sesja musi istniec zanim zawolamy bramke, webhook moze przyjsc wczesnie
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=PAYMENT_SESSION_TTL_SECONDS)
            order.payment_session = PaymentSessionModel(
                session_id=session_id,
                qr_payload=QR_PLACEHOLDER,
                amount=total,
                status="pending",
                expires_at=expires_at,
            )

        try:
            created = self.repo.create_order_with_items(order, items)
        except SQLAlchemyError as e:
            self.repo.rollback()
            logger.error(f"Order placement failed for session {session_id}: {e}")
            raise PersistenceError("Nie udalo sie zapisac zamowienia") from e

        logger.info(
            f"Order {created.id} created ({payment_method}, {len(items)} lines, "
            f"total {total}, session {session_id})"
        )
        self._publish("INSERT", created)

        return {
            "order_id": created.id,
            "session_id": session_id,
            "status": created.status,
            "total_amount": created.total_amount,
            "expires_at": expires_at,
        }

    def advance_order_status(self, order_id: int, target_status: str) -> dict:
        """
        Use Case: Zmiana statusu przez obsluge.
        Sprawdzenie przejscia przed zapisem, zapis warunkowy na poprzedni status
        (dwa urzadzenia naraz nie przepchna tego samego przejscia dwa razy).
        """
        order = self.repo.get_order(order_id)

        if not order:
            raise NotFoundError(f"Zamowienie {order_id} nie istnieje")

        current = order.status
        if target_status not in ALLOWED_TRANSITIONS.get(current, set()):
            logger.warning(f"Rejected transition {current} -> {target_status} for order {order_id}")
            raise InvalidTransition(order_id, current, target_status)

        new_data = {"status": target_status}
        if target_status == "completed":
            new_data["completed_at"] = datetime.now(timezone.utc)

        try:
            rowcount = self.repo.update_order_status(order_id, current, new_data)

            if rowcount == 0:
                self.repo.rollback()
                actual = self.repo.get_order(order_id)
                actual_status = actual.status if actual else None
                logger.warning(
                    f"Concurrent status change on order {order_id}: expected {current}, "
                    f"found {actual_status}"
                )
                raise InvalidTransition(order_id, actual_status, target_status)

            self.repo.commit()
        except SQLAlchemyError as e:
            self.repo.rollback()
            logger.error(f"Status update {current} -> {target_status} failed for order {order_id}: {e}")
            raise PersistenceError("Nie udalo sie zmienic statusu") from e

        self.db.refresh(order)
        logger.info(f"Order {order_id}: {current} -> {target_status}")
        self._publish("UPDATE", order)

        return order_row(order)

    #query
    def get_order(self, order_id: int) -> dict:
        order = self.repo.get_order_with_items(order_id)

        if not order:
            raise NotFoundError(f"Zamowienie {order_id} nie istnieje")

        return order_to_dict(order)

    def list_queue(
        self,
        statuses: Iterable[str] = VISIBLE_STATUSES,
        window_hours: int = QUEUE_WINDOW_HOURS,
    ) -> List[dict]:
        statuses = list(statuses)
        unknown = [s for s in statuses if s not in ORDER_STATUSES]
        if unknown:
            raise ValidationError(f"Nieznane statusy: {', '.join(unknown)}")

        since = datetime.now(timezone.utc) - timedelta(hours=window_hours)
        return [order_to_dict(o) for o in self.repo.list_orders(statuses, since)]
