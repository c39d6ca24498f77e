"""Tests for turning a cart into an order."""

import pytest

import cart
import catalog
import orders
from conftest import stock_of
from database import oid
from errors import CartChangedError, EmptyCartError, InsufficientStockError, ProductUnavailableError
from schemas import OrderStatus, PaymentStatus


class TestCreateOrder:
    def test_scenario_order_from_cart(self, db, make_product, user, shipping_address):
        pid = make_product(stock=5, price=20.0, name="Desk Lamp")
        cart.add_item(user.user_id, pid, 3)

        order = orders.create_order(user.user_id, shipping_address, "Credit Card")

        assert order["items_price"] == 60.0
        assert order["shipping_price"] == 10.0
        assert order["tax_price"] == 6.0
        assert order["total_amount"] == 76.0
        assert order["order_status"] == OrderStatus.PROCESSING.value
        assert order["payment_status"] == PaymentStatus.PENDING.value
        assert stock_of(db, pid) == 2
        assert cart.cart_count(user.user_id) == 0

    def test_cart_row_survives_checkout(self, db, make_product, user, shipping_address):
        pid = make_product()
        cart.add_item(user.user_id, pid, 1)

        orders.create_order(user.user_id, shipping_address, "PayPal")

        stored = db["cart"].find_one({"user": user.user_id})
        assert stored is not None
        assert stored["items"] == []
        assert stored["total_price"] == 0.0

    def test_snapshot_copies_product_details(self, db, make_product, user, shipping_address):
        pid = make_product(name="Kettle", images=["a.jpg", "b.jpg"], price=45.5)
        cart.add_item(user.user_id, pid, 1)

        order = orders.create_order(user.user_id, shipping_address, "PayPal")

        assert order["items"] == [
            {"product": pid, "name": "Kettle", "image": "a.jpg", "price": 45.5, "quantity": 1}
        ]
        assert order["shipping_address"]["full_name"] == "Ada Lovelace"
        assert order["user"] == user.user_id

    def test_uses_current_catalog_price(self, db, make_product, user, shipping_address):
        pid = make_product(price=20.0)
        cart.add_item(user.user_id, pid, 2)
        db["product"].update_one({"_id": oid(pid)}, {"$set": {"price": 30.0}})

        order = orders.create_order(user.user_id, shipping_address, "Debit Card")

        assert order["items_price"] == 60.0
        assert order["items"][0]["price"] == 30.0

    def test_free_shipping_over_hundred(self, db, make_product, user, shipping_address):
        pid = make_product(price=55.0, stock=10)
        cart.add_item(user.user_id, pid, 2)

        order = orders.create_order(user.user_id, shipping_address, "Bank Transfer")

        assert order["items_price"] == 110.0
        assert order["shipping_price"] == 0.0
        assert order["total_amount"] == 121.0

    def test_empty_cart_rejected(self, db, user, shipping_address):
        with pytest.raises(EmptyCartError):
            orders.create_order(user.user_id, shipping_address, "PayPal")
        assert db["order"].count_documents({}) == 0


class TestCheckoutFailures:
    def test_scenario_stock_dropped_after_add(self, db, make_product, user, shipping_address):
        pid = make_product(stock=5, name="Tent")
        cart.add_item(user.user_id, pid, 3)
        db["product"].update_one({"_id": oid(pid)}, {"$set": {"stock": 2}})

        with pytest.raises(InsufficientStockError) as excinfo:
            orders.create_order(user.user_id, shipping_address, "PayPal")

        assert excinfo.value.product_name == "Tent"
        assert excinfo.value.available == 2
        assert excinfo.value.requested == 3
        assert db["order"].count_documents({}) == 0
        assert stock_of(db, pid) == 2
        assert cart.cart_count(user.user_id) == 3

    def test_inactive_product_aborts_everything(self, db, make_product, user, shipping_address):
        good = make_product(stock=5)
        gone = make_product(stock=5, name="Old Model")
        cart.add_item(user.user_id, good, 1)
        cart.add_item(user.user_id, gone, 1)
        db["product"].update_one({"_id": oid(gone)}, {"$set": {"is_active": False}})

        with pytest.raises(ProductUnavailableError) as excinfo:
            orders.create_order(user.user_id, shipping_address, "PayPal")

        assert "Old Model" in str(excinfo.value)
        assert stock_of(db, good) == 5
        assert db["order"].count_documents({}) == 0

    def test_deleted_product_is_unavailable(self, db, make_product, user, shipping_address):
        pid = make_product()
        cart.add_item(user.user_id, pid, 1)
        db["product"].delete_one({"_id": oid(pid)})

        with pytest.raises(ProductUnavailableError):
            orders.create_order(user.user_id, shipping_address, "PayPal")

    def test_concurrent_sale_releases_earlier_reservations(
        self, db, make_product, user, shipping_address, monkeypatch
    ):
        first = make_product(stock=5, name="First")
        second = make_product(stock=5, name="Second")
        cart.add_item(user.user_id, first, 2)
        cart.add_item(user.user_id, second, 4)

        check_lines = orders._check_lines

        def sell_out_second(items, products):
            snapshot = check_lines(items, products)
            # Another checkout takes most of the second product's stock.
            db["product"].update_one({"_id": oid(second)}, {"$inc": {"stock": -3}})
            return snapshot

        monkeypatch.setattr(orders, "_check_lines", sell_out_second)

        with pytest.raises(InsufficientStockError) as excinfo:
            orders.create_order(user.user_id, shipping_address, "PayPal")

        assert excinfo.value.available == 2
        assert stock_of(db, first) == 5
        assert stock_of(db, second) == 2
        assert db["order"].count_documents({}) == 0
        assert cart.cart_count(user.user_id) == 6

    def test_failed_order_insert_restores_stock(self, db, make_product, user, shipping_address, monkeypatch):
        pid = make_product(stock=5)
        cart.add_item(user.user_id, pid, 3)

        def broken_insert(collection_name, data):
            raise RuntimeError("write failed")

        monkeypatch.setattr(orders, "create_document", broken_insert)

        with pytest.raises(RuntimeError):
            orders.create_order(user.user_id, shipping_address, "PayPal")

        assert stock_of(db, pid) == 5
        assert cart.cart_count(user.user_id) == 3

    def test_stock_never_negative(self, db, make_product):
        pid = make_product(stock=1)

        assert catalog.reserve_stock(pid, 1) is not None
        assert catalog.reserve_stock(pid, 1) is None
        assert stock_of(db, pid) == 0

    def test_failed_cart_claim_undoes_order(self, db, make_product, user, shipping_address, monkeypatch):
        pid = make_product(stock=5)
        cart.add_item(user.user_id, pid, 3)

        def broken_claim(cart_doc):
            assert db["order"].count_documents({}) == 1
            raise RuntimeError("write failed")

        monkeypatch.setattr(orders, "_claim_cart", broken_claim)

        with pytest.raises(RuntimeError):
            orders.create_order(user.user_id, shipping_address, "PayPal")

        assert db["order"].count_documents({}) == 0
        assert stock_of(db, pid) == 5
        assert cart.cart_count(user.user_id) == 3


class TestCartClaim:
    def test_same_cart_checked_out_twice_places_one_order(
        self, db, make_product, user, shipping_address, monkeypatch
    ):
        pid = make_product(stock=10)
        cart.add_item(user.user_id, pid, 3)

        reserve = catalog.reserve_stock
        placed = []

        def reserve_after_competing_checkout(product_id, quantity):
            if not placed:
                # Marked first so the competing checkout reserves directly.
                placed.append(None)
                placed[0] = orders.create_order(user.user_id, shipping_address, "PayPal")
            return reserve(product_id, quantity)

        monkeypatch.setattr(catalog, "reserve_stock", reserve_after_competing_checkout)

        with pytest.raises(CartChangedError):
            orders.create_order(user.user_id, shipping_address, "PayPal")

        assert db["order"].count_documents({}) == 1
        assert str(db["order"].find_one()["_id"]) == placed[0]["id"]
        assert stock_of(db, pid) == 7
        assert cart.cart_count(user.user_id) == 0

    def test_line_added_mid_checkout_is_kept(self, db, make_product, user, shipping_address, monkeypatch):
        first = make_product(stock=5)
        late = make_product(stock=5)
        cart.add_item(user.user_id, first, 2)

        reserve = catalog.reserve_stock

        def reserve_while_user_adds(product_id, quantity):
            cart.add_item(user.user_id, late, 1)
            return reserve(product_id, quantity)

        monkeypatch.setattr(catalog, "reserve_stock", reserve_while_user_adds)

        with pytest.raises(CartChangedError):
            orders.create_order(user.user_id, shipping_address, "PayPal")

        assert db["order"].count_documents({}) == 0
        assert stock_of(db, first) == 5
        assert cart.cart_count(user.user_id) == 3
