# app/tasks/expire.py
from app.celery_worker import celery_app
from app.data.database import SessionLocal
from app.services.payment_service import PaymentService
from app.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="app.tasks.expire.expire_payment_sessions_task")
def expire_payment_sessions_task():
    """
    Sesje QR po expires_at bez potwierdzenia -> expired.
    Zamowienia zostaja w pending, spozniony webhook nadal je oplaci.
    """
    logger.info("Expire payment sessions task started")

    db = SessionLocal()
    try:
        return PaymentService(db).expire_stale_sessions()
    finally:
        db.close()
