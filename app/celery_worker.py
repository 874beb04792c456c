# app/celery_worker.py
from celery import Celery

from app.utils.settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND

celery_app = Celery(
    "teashop",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# WAŻNE: Explicite importuj taski, żeby Celery je zarejestrował
celery_app.conf.imports = (
    "app.tasks.expire",
    "app.services.notification_service",
)

celery_app.conf.beat_schedule = {
    "expire-payment-sessions-every-minute": {
        "task": "app.tasks.expire.expire_payment_sessions_task",
        "schedule": 60.0,
    },
}

celery_app.conf.timezone = "UTC"
