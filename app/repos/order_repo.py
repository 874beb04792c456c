# app/repos/order_repo.py
from datetime import datetime
from typing import Iterable, List

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from app.data.models.order import OrderModel
from app.data.models.order_item import OrderItemModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_order_with_items(self, order: OrderModel, items: List[OrderItemModel]) -> OrderModel:
        #zamowienie i pozycje w jednej transakcji, nigdy zamowienie bez pozycji
        order.items.extend(items)
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        return order

    def get_order(self, order_id: int) -> OrderModel | None:
        return self.db.get(OrderModel, order_id)

    def get_order_with_items(self, order_id: int) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel)
            .options(selectinload(OrderModel.items))
            .where(OrderModel.id == order_id)
        ).scalar_one_or_none()

    def list_orders(self, statuses: Iterable[str], since: datetime) -> List[OrderModel]:
        return list(
            self.db.execute(
                select(OrderModel)
                .options(selectinload(OrderModel.items))
                .where(
                    OrderModel.status.in_(list(statuses)),
                    OrderModel.created_at >= since,
                )
                .order_by(OrderModel.created_at.asc(), OrderModel.id.asc())
            ).scalars().all()
        )

    def update_order_status(self, order_id: int, expected_status: str, new_data: dict) -> int:
        # update orders set ... where id = X and status = expected
        result = self.db.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.status == expected_status,
            )
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
