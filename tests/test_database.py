import tempfile
import threading
import unittest
from datetime import date, timedelta
from pathlib import Path

from conftest import add_catch, make_fisherman, upcoming_slot
from ulid import ULID

from fishstore.database import SqlAlchemyStoreDatabase
from fishstore.errors import ConflictError, InvalidTransitionError, NotFoundError, SoldOutError
from fishstore.types import (
    CreateOrderRequest,
    DefaultPriceIn,
    FulfillmentType,
    Identity,
    OrderLine,
    OrderStatus,
    ProductUpdate,
    UserRole,
)


def order_request(*lines: tuple[ULID, float], fulfillment_type=FulfillmentType.pickup, address=None):
    return CreateOrderRequest(
        cart_items=[OrderLine(product_id=pid, quantity=qty) for pid, qty in lines],
        customer_name="Maija Asiakas",
        customer_phone="040 123 4567",
        customer_address=address,
        fulfillment_type=fulfillment_type,
    )


class TestDatabase(unittest.TestCase):
    def setUp(self):
        self.database = SqlAlchemyStoreDatabase("sqlite:///:memory:")
        self.admin, self.profile = make_fisherman(self.database)
        self.customer = self.database.upsert_identity(Identity(external_id="customer-1", email="asiakas@example.com"))

    def tearDown(self):
        self.database.dispose()

    def stock(self, product_id):
        return self.database.get_product(product_id).available_quantity

    def test_upsert_identity_creates_customer_once(self):
        again = self.database.upsert_identity(Identity(external_id="customer-1", email="asiakas@example.com"))

        self.assertEqual(again.id, self.customer.id)
        self.assertEqual(again.role, UserRole.customer)
        self.assertEqual(self.database.get_user_by_email("ASIAKAS@example.com").id, self.customer.id)

    def test_place_order_decrements_stock(self):
        group = add_catch(self.database, self.profile, [("Kuha", "Fileoitu", 32.0, 5.0)])
        product = group.products[0]

        order = self.database.place_order(self.customer.id, self.profile.id, 0.0, order_request((product.id, 1.5)))

        self.assertEqual(order.status, OrderStatus.new)
        self.assertEqual(len(order.items), 1)
        self.assertEqual(order.items[0].line_total, 48.0)
        self.assertEqual(order.total, 48.0)
        self.assertEqual(self.stock(product.id), 3.5)

    def test_order_for_all_remaining_stock_succeeds(self):
        product = add_catch(self.database, self.profile, [("Ahven", "Kokonainen", 12.0, 2.0)]).products[0]

        self.database.place_order(self.customer.id, self.profile.id, 0.0, order_request((product.id, 2.0)))

        self.assertEqual(self.stock(product.id), 0.0)
        self.assertEqual(self.database.list_available_products(), [])

    def test_sold_out_leaves_stock_unchanged_and_writes_no_order(self):
        group = add_catch(
            self.database,
            self.profile,
            [("Kuha", "Fileoitu", 32.0, 5.0), ("Hauki", "Kokonainen", 9.0, 1.0)],
        )
        by_species = {p.species: p for p in group.products}
        kuha, hauki = by_species["Kuha"], by_species["Hauki"]

        with self.assertRaises(SoldOutError) as ctx:
            self.database.place_order(
                self.customer.id,
                self.profile.id,
                0.0,
                order_request((kuha.id, 1.0), (hauki.id, 2.0)),
            )

        self.assertEqual(ctx.exception.sold_out_items, ["Hauki (Kokonainen)"])
        self.assertEqual(ctx.exception.sold_out_product_ids, [str(hauki.id)])
        self.assertEqual(self.stock(kuha.id), 5.0)
        self.assertEqual(self.stock(hauki.id), 1.0)
        self.assertEqual(self.database.list_customer_orders(self.customer.id), [])

    def test_duplicate_lines_are_merged(self):
        product = add_catch(self.database, self.profile, [("Kuha", "Fileoitu", 30.0, 3.0)]).products[0]

        order = self.database.place_order(
            self.customer.id, self.profile.id, 0.0, order_request((product.id, 1.0), (product.id, 1.5))
        )

        self.assertEqual(len(order.items), 1)
        self.assertEqual(order.items[0].quantity, 2.5)
        self.assertEqual(self.stock(product.id), 0.5)

    def test_delivery_total_includes_fee(self):
        product = add_catch(self.database, self.profile, [("Kuha", "Fileoitu", 30.0, 3.0)]).products[0]

        order = self.database.place_order(
            self.customer.id,
            self.profile.id,
            7.5,
            order_request((product.id, 1.0), fulfillment_type=FulfillmentType.delivery, address="Kotikatu 2"),
        )

        self.assertEqual(order.items_total, 30.0)
        self.assertEqual(order.final_delivery_fee, 7.5)
        self.assertEqual(order.total, 37.5)

    def test_cancel_confirmed_order_restores_stock(self):
        group = add_catch(
            self.database,
            self.profile,
            [("Kuha", "Fileoitu", 32.0, 5.0), ("Siika", "Savustettu", 28.0, 2.25)],
        )
        before = {p.id: p.available_quantity for p in group.products}
        order = self.database.place_order(
            self.customer.id,
            self.profile.id,
            0.0,
            order_request(*[(p.id, 1.25) for p in group.products]),
        )

        self.database.set_order_status(order.id, OrderStatus.confirmed)
        cancelled = self.database.set_order_status(order.id, OrderStatus.cancelled)

        self.assertEqual(cancelled.status, OrderStatus.cancelled)
        for product_id, quantity in before.items():
            self.assertEqual(self.stock(product_id), quantity)

    def test_cancelled_order_cannot_be_cancelled_again(self):
        product = add_catch(self.database, self.profile).products[0]
        order = self.database.place_order(self.customer.id, self.profile.id, 0.0, order_request((product.id, 1.0)))
        self.database.set_order_status(order.id, OrderStatus.cancelled)

        with self.assertRaises(InvalidTransitionError):
            self.database.set_order_status(order.id, OrderStatus.cancelled)

        # Stock was restored exactly once
        self.assertEqual(self.stock(product.id), 5.0)

    def test_illegal_transitions_are_rejected(self):
        product = add_catch(self.database, self.profile).products[0]
        order = self.database.place_order(self.customer.id, self.profile.id, 0.0, order_request((product.id, 1.0)))

        with self.assertRaises(InvalidTransitionError):
            self.database.set_order_status(order.id, OrderStatus.completed)

        self.database.set_order_status(order.id, OrderStatus.confirmed)
        self.database.set_order_status(order.id, OrderStatus.completed)

        for target in (OrderStatus.new, OrderStatus.confirmed, OrderStatus.cancelled):
            with self.assertRaises(InvalidTransitionError):
                self.database.set_order_status(order.id, target)

    def test_confirm_stores_adjusted_delivery_fee(self):
        product = add_catch(self.database, self.profile).products[0]
        order = self.database.place_order(
            self.customer.id,
            self.profile.id,
            7.5,
            order_request((product.id, 1.0), fulfillment_type=FulfillmentType.delivery, address="Kotikatu 2"),
        )

        confirmed = self.database.set_order_status(order.id, OrderStatus.confirmed, delivery_fee=10.0)

        self.assertEqual(confirmed.final_delivery_fee, 10.0)
        self.assertEqual(confirmed.total, 42.0)

    def test_status_change_checks_owning_fisherman(self):
        product = add_catch(self.database, self.profile).products[0]
        order = self.database.place_order(self.customer.id, self.profile.id, 0.0, order_request((product.id, 1.0)))
        _, other_profile = make_fisherman(self.database, external_id="fisher-2", email="toinen@example.com")

        with self.assertRaises(NotFoundError):
            self.database.set_order_status(order.id, OrderStatus.confirmed, fisherman_profile_id=other_profile.id)

    def test_count_and_filter_orders_by_status(self):
        product = add_catch(self.database, self.profile).products[0]
        first = self.database.place_order(self.customer.id, self.profile.id, 0.0, order_request((product.id, 1.0)))
        self.database.place_order(self.customer.id, self.profile.id, 0.0, order_request((product.id, 1.0)))
        self.database.set_order_status(first.id, OrderStatus.confirmed)

        self.assertEqual(self.database.count_orders(self.profile.id, OrderStatus.new), 1)
        confirmed = self.database.list_orders(self.profile.id, OrderStatus.confirmed)
        self.assertEqual([o.id for o in confirmed], [first.id])
        self.assertEqual(len(self.database.list_orders(self.profile.id)), 2)

    def test_catch_groups_newest_first_with_slots_in_start_order(self):
        older = add_catch(self.database, self.profile, catch_date=date.today() - timedelta(days=3))
        newer = add_catch(
            self.database,
            self.profile,
            catch_date=date.today(),
            slots=[upcoming_slot(days=3), upcoming_slot(days=1), upcoming_slot(days=2)],
        )

        groups = self.database.get_catch_groups(self.profile.id)

        self.assertEqual([g.catch_id for g in groups], [newer.catch_id, older.catch_id])
        starts = [s.start_time for s in groups[0].fulfillment_slots]
        self.assertEqual(starts, sorted(starts))

    def test_delete_catch_cascades_to_products_and_slots(self):
        group = add_catch(self.database, self.profile)

        self.assertTrue(self.database.delete_catch(self.profile.id, group.catch_id))

        self.assertIsNone(self.database.get_product(group.products[0].id))
        self.assertEqual(self.database.list_slots(self.profile.id), [])

    def test_update_product_only_for_owner(self):
        product = add_catch(self.database, self.profile).products[0]
        _, other_profile = make_fisherman(self.database, external_id="fisher-2", email="toinen@example.com")

        self.assertIsNone(self.database.update_product(other_profile.id, product.id, ProductUpdate(price_per_kg=1.0)))
        updated = self.database.update_product(self.profile.id, product.id, ProductUpdate(available_quantity=0.0))

        self.assertEqual(updated.available_quantity, 0.0)
        self.assertEqual(updated.price_per_kg, 32.0)

    def test_default_price_is_unique_per_species_and_form(self):
        self.database.add_default_price(self.profile.id, DefaultPriceIn(species="Kuha", form="Fileoitu", price_per_kg=30))

        with self.assertRaises(ConflictError):
            self.database.add_default_price(
                self.profile.id, DefaultPriceIn(species="Kuha", form="Fileoitu", price_per_kg=35)
            )

        self.assertEqual(self.database.find_default_price(self.profile.id, "Kuha", "Fileoitu"), 30.0)
        self.assertIsNone(self.database.find_default_price(self.profile.id, "Kuha", "Kokonainen"))

    def test_replace_trips_only_touches_the_given_range(self):
        self.database.replace_trips(self.profile.id, date(2030, 5, 1), date(2030, 5, 31), [date(2030, 5, 10)])
        self.database.replace_trips(
            self.profile.id, date(2030, 6, 1), date(2030, 6, 30), [date(2030, 6, 2), date(2030, 6, 2), date(2030, 6, 9)]
        )

        self.database.replace_trips(self.profile.id, date(2030, 6, 1), date(2030, 6, 30), [date(2030, 6, 20)])

        trips = self.database.list_trips(date(2030, 5, 1), date(2030, 6, 30), self.profile.id)
        self.assertEqual([t.trip_date for t in trips], [date(2030, 5, 10), date(2030, 6, 20)])

    def test_subscription_is_idempotent(self):
        first, created = self.database.add_subscription("tilaaja@example.com")
        again, created_again = self.database.add_subscription("tilaaja@example.com")

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first.id, again.id)
        self.assertEqual(len(self.database.list_subscriptions()), 1)


class TestConcurrentOrders(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.database = SqlAlchemyStoreDatabase(f"sqlite:///{Path(self._tmp.name) / 'store.db'}")
        _, self.profile = make_fisherman(self.database)
        self.customers = [
            self.database.upsert_identity(Identity(external_id=f"customer-{i}", email=f"c{i}@example.com"))
            for i in range(2)
        ]

    def tearDown(self):
        self.database.dispose()
        self._tmp.cleanup()

    def test_last_unit_is_sold_exactly_once(self):
        product = add_catch(self.database, self.profile, [("Kuha", "Fileoitu", 32.0, 1.0)]).products[0]
        barrier = threading.Barrier(len(self.customers))
        outcomes: list[object] = []
        lock = threading.Lock()

        def buy(customer):
            barrier.wait()
            try:
                result = self.database.place_order(
                    customer.id, self.profile.id, 0.0, order_request((product.id, 1.0))
                )
            except Exception as e:
                result = e
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=buy, args=(c,)) for c in self.customers]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        self.assertEqual(len(outcomes), 2)
        failures = [o for o in outcomes if isinstance(o, Exception)]
        self.assertEqual(len(failures), 1, failures)
        self.assertIsInstance(failures[0], SoldOutError)
        self.assertEqual(failures[0].sold_out_product_ids, [str(product.id)])
        self.assertEqual(failures[0].sold_out_items, ["Kuha (Fileoitu)"])

        self.assertEqual(self.database.get_product(product.id).available_quantity, 0.0)
        placed = sum(len(self.database.list_customer_orders(c.id)) for c in self.customers)
        self.assertEqual(placed, 1)
