# app/domain/money.py
from decimal import Decimal
from typing import Iterable

ZERO = Decimal("0.00")


def compute_line_total(base_price, modifiers: Iterable, quantity: int) -> Decimal:
    # bez zaokraglania, formatowanie dopiero przy wyswietlaniu
    unit = Decimal(str(base_price)) + sum((Decimal(str(m)) for m in modifiers), ZERO)
    return unit * quantity


def compute_cart_total(lines) -> Decimal:
    return sum((line.line_total for line in lines), ZERO)


def count_items(lines) -> int:
    return sum(line.quantity for line in lines)
