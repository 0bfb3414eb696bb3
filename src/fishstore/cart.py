"""Shopping cart kept on the client.

The cart never touches the database: it is a list of lines persisted under a
fixed storage key per client (a browser profile, a CLI user) and turned into
order lines at checkout. After a sold-out checkout response the cart prunes
the listed products and remembers their names so the client can tell the
customer what was removed.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from fishstore.pricing import calculate_total, items_total
from fishstore.types import FulfillmentType, OrderLine

CART_STORAGE_KEY = "kotimaistakalaa_cart"

log = structlog.get_logger(__name__)


class CartItem(BaseModel):
    product_id: str
    species: str
    form: str
    price_per_kg: float
    quantity: float = Field(gt=0)
    fisherman_name: str = ""
    available_quantity: float = 0.0

    @property
    def display_name(self) -> str:
        return f"{self.species} ({self.form})"


class Cart(BaseModel):
    items: list[CartItem] = Field(default_factory=list)
    # Names of lines dropped by the last sold-out recovery
    removed_items: list[str] = Field(default_factory=list)

    def add_item(self, item: CartItem) -> None:
        """Add a line, or grow the quantity of the line already holding this product."""
        for index, existing in enumerate(self.items):
            if existing.product_id == item.product_id:
                self.items[index] = existing.model_copy(
                    update={"quantity": round(existing.quantity + item.quantity, 2)}
                )
                return
        self.items.append(item)

    def update_quantity(self, product_id: str, quantity: float) -> None:
        if quantity <= 0:
            self.remove_item(product_id)
            return
        self.items = [
            item.model_copy(update={"quantity": round(quantity, 2)}) if item.product_id == product_id else item
            for item in self.items
        ]

    def remove_item(self, product_id: str) -> None:
        self.items = [item for item in self.items if item.product_id != product_id]

    def remove_items_by_id(self, product_ids: Iterable[str]) -> list[str]:
        ids = {str(pid) for pid in product_ids}
        removed = [item.display_name for item in self.items if item.product_id in ids]
        self.items = [item for item in self.items if item.product_id not in ids]
        self.removed_items = removed
        return removed

    def clear_removed_items(self) -> None:
        self.removed_items = []

    def clear(self) -> None:
        self.items = []

    def item_count(self) -> int:
        return len(self.items)

    def total_price(self) -> float:
        return items_total(self.items)

    def total(self, fulfillment_type: FulfillmentType | str, delivery_fee: float | None) -> float:
        return calculate_total(self.items, fulfillment_type, delivery_fee)

    def is_in_cart(self, product_id: str) -> bool:
        return any(item.product_id == product_id for item in self.items)

    def to_order_lines(self) -> list[OrderLine]:
        return [OrderLine(product_id=item.product_id, quantity=item.quantity) for item in self.items]

    def apply_sold_out(self, response: Mapping[str, Any]) -> list[str]:
        """Prune the products named in a sold-out checkout response.

        Returns the names removed from the cart; an unrelated error body leaves the cart as is.
        """
        if response.get("error") != "Items sold out":
            return []
        return self.remove_items_by_id(response.get("soldOutProductIds") or [])


class CartStorage:
    """Persists carts as JSON, one file per client scope, under a fixed key."""

    def __init__(self, directory: str | Path, key: str = CART_STORAGE_KEY) -> None:
        self._directory = Path(directory)
        self._key = key

    def _path(self, scope: str) -> Path:
        return self._directory / scope / f"{self._key}.json"

    def load(self, scope: str = "default") -> Cart:
        path = self._path(scope)
        if not path.exists():
            return Cart()
        try:
            items = json.loads(path.read_text(encoding="utf-8"))
            return Cart(items=[CartItem.model_validate(i) for i in items])
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            log.warning("cart_storage_corrupt", scope=scope, error=repr(e))
            return Cart()

    def save(self, cart: Cart, scope: str = "default") -> None:
        path = self._path(scope)
        os.makedirs(path.parent, exist_ok=True)
        payload = [item.model_dump(mode="json") for item in cart.items]
        path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")

    def clear(self, scope: str = "default") -> None:
        """Forget the stored cart, as on logout."""
        self._path(scope).unlink(missing_ok=True)
