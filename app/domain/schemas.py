# app/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import List, Literal
from decimal import Decimal
from datetime import datetime


class Customization(BaseModel):
    """Wybrana opcja z grupy personalizacji (np. mleko: owsiane)."""

    group_id: str
    group_name: str
    option_id: str
    option_name: str
    price_modifier: Decimal = Field(Decimal("0"), description="Moze byc ujemny")


class MenuItemRef(BaseModel):
    """Migawka pozycji menu w momencie dodania do koszyka."""

    id: str
    name: str
    base_price: Decimal = Field(..., ge=0)


class LineItem(BaseModel):
    menu_item: MenuItemRef
    quantity: int = Field(..., ge=1)
    customizations: List[Customization] = Field(default_factory=list)
    line_total: Decimal = Decimal("0")


class AddLineIn(BaseModel):
    """Schema dla dodawania pozycji do koszyka."""

    menu_item: MenuItemRef
    customizations: List[Customization] = Field(default_factory=list)
    quantity: int = Field(1, gt=0, description="Ilosc (musi byc > 0)")


class SetQuantityIn(BaseModel):
    quantity: int = Field(..., description="0 lub mniej usuwa pozycje")


class CartOut(BaseModel):
    """Schema dla koszyka kiosku (response)."""

    device_id: str
    lines: List[LineItem]
    total: Decimal
    item_count: int


class OrderCreate(BaseModel):
    """Schema dla skladania zamowienia z koszyka."""

    customer_initials: str = Field(..., description="2-3 litery")
    payment_method: Literal["cash", "qr"]
    lines: List[LineItem]


class OrderPlacedOut(BaseModel):
    order_id: int
    session_id: str
    status: str
    total_amount: Decimal
    expires_at: datetime | None = None


class OrderItemOut(BaseModel):
    id: int
    menu_item_id: str
    menu_item_name: str
    quantity: int
    customizations_snapshot: list
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    """Schema dla zamowienia z pozycjami (response)."""

    id: int
    session_id: str
    customer_initials: str
    payment_method: str
    total_amount: Decimal
    status: str
    created_at: datetime
    completed_at: datetime | None = None
    items: List[OrderItemOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class StatusChangeIn(BaseModel):
    status: Literal["pending", "paid", "preparing", "completed", "cancelled"]


class PaymentRequestIn(BaseModel):
    """Schema dla utworzenia platnosci QR w bramce."""

    amount: Decimal = Field(..., gt=0)
    session_id: str = Field(..., min_length=1)
    order_id: int = Field(..., gt=0)
    customer_name: str | None = None


class PaymentRequestOut(BaseModel):
    qr_payload: str
    gateway_url: str | None = None
    gateway_payment_id: str | None = None
    expires_at: datetime


class PaymentSessionOut(BaseModel):
    session_id: str
    order_id: int
    status: str
    amount: Decimal
    expires_at: datetime
    confirmed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
