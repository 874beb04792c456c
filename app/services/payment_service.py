# app/services/payment_service.py
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.data.models.payment_session import PaymentSessionModel
from app.domain.errors import (
    GatewayError,
    NotFoundError,
    PaymentSessionClosed,
    PersistenceError,
    SignatureError,
    ValidationError,
)
from app.repos.order_repo import OrderRepo
from app.repos.payment_repo import PaymentRepo
from app.services.gateway_client import GatewayClient, verify_signature
from app.services.order_service import order_row
from app.utils.settings import APP_URL, GATEWAY_SALT, GATEWAY_SANDBOX
from app.utils.logging import get_logger

logger = get_logger(__name__)

WEBHOOK_PATH = "/webhooks/payment"

# rozne srodowiska bramki uzywaja roznych tokenow sukcesu
SUCCESS_STATUSES = {"completed", "succeeded"}


def session_row(ps: PaymentSessionModel) -> dict:
    return {
        "id": ps.id,
        "session_id": ps.session_id,
        "order_id": ps.order_id,
        "status": ps.status,
        "amount": ps.amount,
        "expires_at": ps.expires_at,
        "confirmed_at": ps.confirmed_at,
    }


class PaymentService:
    """
    Platnosci QR:
    -request_qr_payment: wywolanie bramki dla istniejacej sesji (tez jako ponowienie)
    -handle_webhook: potwierdzenie od bramki, idempotentne
    -get_session: odczyt statusu dla pollingu kiosku
    """

    def __init__(
        self,
        db: Session,
        gateway: GatewayClient | None = None,
        change_feed=None,
        notifier=None,
        salt: str | None = None,
        sandbox: bool | None = None,
    ):
        self.db = db
        self.repo = PaymentRepo(db)
        self.order_repo = OrderRepo(db)
        self.gateway = gateway
        self.change_feed = change_feed
        self.notifier = notifier
        self.salt = GATEWAY_SALT if salt is None else salt
        self.sandbox = GATEWAY_SANDBOX if sandbox is None else sandbox

    def _publish(self, table: str, row: dict):
        if self.change_feed is not None:
            self.change_feed.publish(table, "UPDATE", new=row)

    #query
    def get_session(self, session_id: str) -> dict:
        ps = self.repo.get_by_session_id(session_id)
        if not ps:
            raise NotFoundError(f"Sesja platnosci {session_id} nie istnieje")
        return session_row(ps)

    #commands
    def request_qr_payment(
        self,
        amount: Decimal,
        session_id: str,
        order_id: int,
        customer_name: str | None = None,
    ) -> dict:
        """
        Use Case: Utworzenie platnosci QR w bramce.
        Wiersze zamowienia i sesji juz istnieja i nie sa tu zmieniane poza danymi z bramki,
        wiec blad bramki mozna po prostu ponowic tym samym wywolaniem.

        expires_at w odpowiedzi to zawsze termin sesji z chwili zlozenia zamowienia.
        Ponowienie nie przedluza sesji, bo wedlug tego terminu dziala wygasanie.
        """
        ps = self.repo.get_by_session_id(session_id)

        if not ps:
            raise NotFoundError(f"Sesja platnosci {session_id} nie istnieje")

        if ps.order_id != order_id:
            raise ValidationError("Sesja platnosci nie nalezy do tego zamowienia")

        # ponowienie tylko dla sesji, ktora wciaz czeka na platnosc
        if ps.status != "pending":
            raise PaymentSessionClosed(session_id, ps.status)

        if Decimal(str(amount)) != ps.amount:
            logger.warning(
                f"Requested amount {amount} differs from session {session_id} amount {ps.amount}, "
                f"using the session amount"
            )

        webhook_url = f"{APP_URL.rstrip('/')}{WEBHOOK_PATH}"
        logger.info(f"Requesting QR payment for session {session_id}, order {order_id}")

        try:
            payment = self.gateway.create_payment_request(
                amount=ps.amount,
                session_id=session_id,
                customer_name=customer_name,
                webhook_url=webhook_url,
            )
        except GatewayError as e:
            logger.error(f"Gateway call failed for session {session_id}: {e}")
            raise

        try:
            self.repo.update_session(ps.id, {
                "qr_payload": payment.qr.url,
                "gateway_payment_id": payment.payment_id,
                "gateway_url": payment.url,
            })
            self.repo.commit()
        except SQLAlchemyError as e:
            # platnosc w bramce juz jest, webhook znajdzie sesje po reference_number
            self.repo.rollback()
            logger.error(f"Could not store gateway data for session {session_id}: {e}")

        return {
            "qr_payload": payment.qr.url,
            "gateway_url": payment.url,
            "gateway_payment_id": payment.payment_id,
            "expires_at": ps.expires_at,
        }

    def handle_webhook(self, fields: dict) -> dict:
        """
        Use Case: Potwierdzenie platnosci od bramki.

        Webhook moze przyjsc wiele razy, drugi raz nic nie zapisuje.
        Bledy drugiego zapisu (zamowienie -> paid) nie psuja odpowiedzi,
        bo bramka ponawialaby w nieskonczonosc.
        """
        received_hmac = fields.get("hmac")

        if received_hmac:
            if not verify_signature(fields, received_hmac, self.salt):
                logger.error(
                    f"Invalid webhook signature (reference {fields.get('reference_number')}, "
                    f"request {fields.get('payment_request_id')})"
                )
                raise SignatureError("Invalid signature")
        elif not self.sandbox:
            logger.error("Webhook without signature rejected outside sandbox")
            raise SignatureError("Missing signature")

        status = fields.get("status")
        if status not in SUCCESS_STATUSES:
            logger.info(f"Webhook status is {status}, not processing")
            return {"received": True}

        reference = fields.get("reference_number")
        request_id = fields.get("payment_request_id")

        ps = None
        if reference and reference != "undefined":
            ps = self.repo.get_by_session_id(reference)
        if ps is None and request_id:
            ps = self.repo.get_by_gateway_payment_id(request_id)

        if ps is None:
            logger.error(f"Payment session not found (reference {reference}, request {request_id})")
            raise NotFoundError("Payment session not found")

        if ps.status == "confirmed":
            logger.info(f"Payment session {ps.session_id} already confirmed, skipping")
            return {"received": True, "already_processed": True}

        new_data = {"confirmed_at": datetime.now(timezone.utc)}
        if request_id:
            new_data["gateway_payment_id"] = request_id

        try:
            rowcount = self.repo.confirm_session(ps.id, new_data)
            if rowcount == 0:
                self.repo.rollback()
                logger.info(f"Payment session {ps.session_id} confirmed concurrently, skipping")
                return {"received": True, "already_processed": True}
            self.repo.commit()
        except SQLAlchemyError as e:
            self.repo.rollback()
            logger.error(f"Failed to confirm payment session {ps.session_id}: {e}")
            raise PersistenceError("Nie udalo sie potwierdzic platnosci") from e

        self.db.refresh(ps)
        logger.info(f"Payment session {ps.session_id} confirmed")
        self._publish("payment_sessions", session_row(ps))

        self._mark_order_paid(ps.session_id, ps.order_id)

        return {"received": True, "session_id": ps.session_id, "status": "confirmed"}

    def _mark_order_paid(self, session_id: str, order_id: int):
        try:
            rowcount = self.order_repo.update_order_status(order_id, "pending", {"status": "paid"})

            if rowcount == 0:
                self.order_repo.rollback()
                order = self.order_repo.get_order(order_id)
                actual = order.status if order else None
                if actual in ("paid", "preparing", "completed"):
                    logger.info(f"Order {order_id} already {actual}")
                    return
                self._report_inconsistency(session_id, order_id, f"order status is {actual}")
                return

            self.order_repo.commit()
        except SQLAlchemyError as e:
            self.order_repo.rollback()
            self._report_inconsistency(session_id, order_id, f"order update failed: {e}")
            return

        order = self.order_repo.get_order(order_id)
        logger.info(f"Order {order_id} marked paid (session {session_id})")
        self._publish("orders", order_row(order))

    def _report_inconsistency(self, session_id: str, order_id: int, reason: str):
        logger.error(
            f"Payment session {session_id} confirmed but order {order_id} not paid: {reason}"
        )
        if self.notifier is None:
            return
        try:
            self.notifier.report_payment_inconsistency(session_id, order_id, reason)
        except Exception:
            logger.exception(f"Could not enqueue reconciliation alert for session {session_id}")

    def expire_stale_sessions(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        try:
            count = self.repo.expire_sessions(now)
            self.repo.commit()
        except SQLAlchemyError as e:
            self.repo.rollback()
            raise PersistenceError("Nie udalo sie wygasic sesji") from e

        if count:
            logger.info(f"Expired {count} payment sessions")
        return count
