# app/services/notification_service.py
from app.celery_worker import celery_app
from app.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Alerty dla obslugi, wysylane asynchronicznie przez Celery.
    """

    @staticmethod
    def report_payment_inconsistency(session_id: str, order_id: int | None, reason: str):
        """
        Platnosc potwierdzona, ale zamowienie nie przeszlo na paid.
        Wymaga recznego uzgodnienia.
        """
        send_reconciliation_alert_task.delay(session_id, order_id, reason)


@celery_app.task(name="app.services.notification_service.send_reconciliation_alert_task")
def send_reconciliation_alert_task(session_id: str, order_id: int | None, reason: str):
    """
    Celery task - teraz tylko loguje na ERROR, zeby trafilo do alertow z logow.
    """
    logger.error(
        f"[RECONCILE] Payment session {session_id} confirmed but order {order_id} "
        f"is not paid: {reason}"
    )

    return {"session_id": session_id, "order_id": order_id, "status": "reported"}
