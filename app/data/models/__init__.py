#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from app.data.models.order import OrderModel
from app.data.models.order_item import OrderItemModel
from app.data.models.payment_session import PaymentSessionModel

__all__ = ["OrderModel", "OrderItemModel", "PaymentSessionModel"]
