# app/repos/payment_repo.py
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.data.models.payment_session import PaymentSessionModel


class PaymentRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_session(self, payment_session: PaymentSessionModel) -> PaymentSessionModel:
        self.db.add(payment_session)
        self.db.commit()
        self.db.refresh(payment_session)
        return payment_session

    def get_by_session_id(self, session_id: str) -> PaymentSessionModel | None:
        return self.db.execute(
            select(PaymentSessionModel).where(PaymentSessionModel.session_id == session_id)
        ).scalar_one_or_none()

    def get_by_gateway_payment_id(self, gateway_payment_id: str) -> PaymentSessionModel | None:
        return self.db.execute(
            select(PaymentSessionModel).where(
                PaymentSessionModel.gateway_payment_id == gateway_payment_id
            )
        ).scalars().first()

    def update_session(self, session_pk: int, new_data: dict) -> int:
        result = self.db.execute(
            update(PaymentSessionModel)
            .where(PaymentSessionModel.id == session_pk)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def confirm_session(self, session_pk: int, new_data: dict) -> int:
        #warunek na status, drugi webhook nie nadpisze potwierdzenia
        result = self.db.execute(
            update(PaymentSessionModel)
            .where(
                PaymentSessionModel.id == session_pk,
                PaymentSessionModel.status != "confirmed",
            )
            .values(status="confirmed", **new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def expire_sessions(self, now: datetime) -> int:
        result = self.db.execute(
            update(PaymentSessionModel)
            .where(
                PaymentSessionModel.status == "pending",
                PaymentSessionModel.expires_at < now,
            )
            .values(status="expired")
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
