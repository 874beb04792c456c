# app/domain/cart.py
from typing import List
from pydantic import TypeAdapter

from app.domain.errors import ValidationError
from app.domain.money import compute_line_total, compute_cart_total, count_items
from app.domain.schemas import LineItem, MenuItemRef, Customization
from app.utils.logging import get_logger

logger = get_logger(__name__)

CART_KEY_PREFIX = "teashop:cart:"

_lines_adapter = TypeAdapter(List[LineItem])


def identity_key(menu_item_id: str, customizations) -> tuple:
    #kolejnosc wyboru opcji nie tworzy duplikatow
    return (menu_item_id, tuple(sorted(c.option_id for c in customizations)))


def _line_total(menu_item: MenuItemRef, customizations, quantity: int):
    return compute_line_total(
        menu_item.base_price,
        [c.price_modifier for c in customizations],
        quantity,
    )


class Cart:
    """
    Koszyk jednego kiosku.
    Kazda zmiana zapisuje cala liste pozycji do slotu storage (get/set),
    np. redis.Redis albo cokolwiek o tym samym interfejsie.
    """

    def __init__(self, storage, key: str, lines: List[LineItem] | None = None):
        self.storage = storage
        self.key = key
        self._lines: List[LineItem] = list(lines or [])

    @classmethod
    def load(cls, storage, device_id: str) -> "Cart":
        key = f"{CART_KEY_PREFIX}{device_id}"
        raw = storage.get(key)
        lines: List[LineItem] = []

        if raw:
            try:
                lines = _lines_adapter.validate_json(raw)
            except ValueError as e:
                # uszkodzone albo stare dane nie moga wywalic startu
                logger.warning(f"Cart {key} could not be restored, starting empty: {e}")
                lines = []

        return cls(storage, key, lines)

    @property
    def lines(self) -> List[LineItem]:
        return list(self._lines)

    def __len__(self):
        return len(self._lines)

    def _save(self):
        self.storage.set(self.key, _lines_adapter.dump_json(self._lines))

    def add_line(
        self,
        menu_item: MenuItemRef,
        customizations: List[Customization] | None = None,
        quantity: int = 1,
    ) -> LineItem:
        if quantity <= 0:
            raise ValidationError("Ilosc musi byc wieksza niz 0")

        customizations = list(customizations or [])
        key = identity_key(menu_item.id, customizations)

        for i, line in enumerate(self._lines):
            if identity_key(line.menu_item.id, line.customizations) == key:
                new_quantity = line.quantity + quantity
                updated = line.model_copy(update={
                    "quantity": new_quantity,
                    "line_total": _line_total(line.menu_item, line.customizations, new_quantity),
                })
                self._lines[i] = updated
                self._save()
                return updated

        line = LineItem(
            menu_item=menu_item,
            quantity=quantity,
            customizations=customizations,
            line_total=_line_total(menu_item, customizations, quantity),
        )
        self._lines.append(line)
        self._save()
        return line

    def remove_line(self, index: int) -> None:
        # indeks z UI moze byc juz nieaktualny
        if not 0 <= index < len(self._lines):
            return
        del self._lines[index]
        self._save()

    def set_quantity(self, index: int, quantity: int) -> None:
        if quantity <= 0:
            self.remove_line(index)
            return
        if not 0 <= index < len(self._lines):
            return

        line = self._lines[index]
        self._lines[index] = line.model_copy(update={
            "quantity": quantity,
            "line_total": _line_total(line.menu_item, line.customizations, quantity),
        })
        self._save()

    def clear(self) -> None:
        self._lines = []
        self._save()

    def total(self):
        return compute_cart_total(self._lines)

    def item_count(self) -> int:
        return count_items(self._lines)
