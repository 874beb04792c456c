# app/data/models/order_item.py
from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, JSON
from sqlalchemy.orm import relationship

from app.data.database import Base


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    menu_item_id = Column(String(64), nullable=False)
    menu_item_name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)

    #kopia wybranych opcji, menu moze sie pozniej zmienic
    customizations_snapshot = Column(JSON, nullable=False, default=list)
    line_total = Column(Numeric(10, 2), nullable=False)

    order = relationship("OrderModel", back_populates="items")
