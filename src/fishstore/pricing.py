"""Line and order totals shared by the cart, orders and email templates."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from fishstore.types import FulfillmentType


class PricedLine(Protocol):
    quantity: float
    price_per_kg: float


def line_total(line: PricedLine) -> float:
    return round(line.quantity * line.price_per_kg, 2)


def items_total(lines: Iterable[PricedLine]) -> float:
    return round(sum(line.quantity * line.price_per_kg for line in lines), 2)


def calculate_total(
    lines: Iterable[PricedLine],
    fulfillment_type: FulfillmentType | str,
    delivery_fee: float | None,
) -> float:
    """Sum of quantity x price, plus the delivery fee only for home delivery."""
    total = items_total(lines)
    if FulfillmentType(fulfillment_type) is FulfillmentType.delivery:
        total += delivery_fee or 0.0
    return round(total, 2)
