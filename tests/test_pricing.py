from types import SimpleNamespace

from fishstore.pricing import calculate_total, items_total, line_total
from fishstore.types import FulfillmentType


def line(quantity: float, price_per_kg: float) -> SimpleNamespace:
    return SimpleNamespace(quantity=quantity, price_per_kg=price_per_kg)


def test_line_total_is_rounded_to_cents() -> None:
    assert line_total(line(0.333, 10.0)) == 3.33


def test_items_total_sums_quantity_times_price() -> None:
    assert items_total([line(1.5, 30.0), line(0.25, 12.0)]) == 48.0
    assert items_total([]) == 0.0


def test_delivery_fee_only_for_delivery() -> None:
    lines = [line(2.0, 10.0)]

    assert calculate_total(lines, FulfillmentType.pickup, 7.5) == 20.0
    assert calculate_total(lines, FulfillmentType.delivery, 7.5) == 27.5
    assert calculate_total(lines, FulfillmentType.delivery, None) == 20.0
