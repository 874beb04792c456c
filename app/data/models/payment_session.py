# app/data/models/payment_session.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, Text
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from app.data.database import Base

QR_PLACEHOLDER = "pending_gateway"


class PaymentSessionModel(Base):
    __tablename__ = "payment_sessions"

    id = Column(Integer, primary_key=True)
    session_id = Column(String(64), nullable=False, unique=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)

    qr_payload = Column(Text, nullable=False, default=QR_PLACEHOLDER)
    amount = Column(Numeric(10, 2), nullable=False)

    status = Column(String(16), nullable=False, default="pending")  # pending, confirmed, expired, failed
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    gateway_payment_id = Column(String(64), nullable=True, index=True)
    gateway_url = Column(Text, nullable=True)

    order = relationship("OrderModel", back_populates="payment_session")
