# Storefront Contract Tests - Orders
#
# Tests for:
# - Stock decrement and audit entry per successful order
# - OutOfStock leaves stock, orders and logs untouched
# - Price snapshot (explicit or current product price)
# - Order listing and dashboard statistics

import pytest

from storefront.errors import NotFound, OutOfStock, ValidationError

from tests.conftest import log_count


class TestPlaceOrder:
    def test_successful_order_decrements_stock_and_logs(self, storage, member, product):
        before_logs = log_count(storage)

        order = storage.place_order(member["id"], product["id"])

        assert order["user_id"] == member["id"]
        assert order["product_id"] == product["id"]
        assert order["product_name"] == "Grand Piece Online"
        assert order["price"] == 49.0
        assert order["status"] == "Completed"
        assert storage.get_product(product["id"])["stock"] == 2

        assert log_count(storage) == before_logs + 1
        entry = storage.list_recent_logs(limit=1)[0]
        assert entry["action"] == "Purchase"
        assert entry["user"] == "buyer"
        assert entry["user_id"] == member["id"]
        assert "Grand Piece Online" in entry["details"]

    def test_n_orders_from_stock_s(self, storage, member, product):
        """
        SCENARIO: Place one more order than there is stock
        EXPECTED: exactly `stock` orders succeed, stock ends at 0,
                  one Purchase log entry per success
        """
        before_logs = log_count(storage)
        results = []
        for _ in range(4):
            try:
                results.append(storage.place_order(member["id"], product["id"]))
            except OutOfStock as exc:
                results.append(exc)

        successes = [r for r in results if isinstance(r, dict)]
        assert len(successes) == 3
        assert isinstance(results[-1], OutOfStock)
        assert storage.get_product(product["id"])["stock"] == 0
        assert log_count(storage) == before_logs + 3
        assert len(storage.list_orders_for_user(member["id"])) == 3

    def test_out_of_stock_changes_nothing(self, storage, member, category):
        sold_out = storage.add_product({"category_id": category["id"], "name": "Gone", "price": 10, "stock": 0})
        before_logs = log_count(storage)

        with pytest.raises(OutOfStock) as excinfo:
            storage.place_order(member["id"], sold_out["id"])

        assert excinfo.value.product_id == sold_out["id"]
        assert storage.get_product(sold_out["id"])["stock"] == 0
        assert storage.list_orders_for_user(member["id"]) == []
        assert log_count(storage) == before_logs

    def test_explicit_price_is_snapshotted(self, storage, member, product):
        order = storage.place_order(member["id"], product["id"], price="12.345")
        storage.update_product(product["id"], {"price": 99})

        # Decimal quantize rounds half-even
        assert order["price"] == 12.34
        listed = storage.list_orders_for_user(member["id"])[0]
        assert listed["price"] == order["price"]

    def test_default_price_is_current_product_price(self, storage, member, product):
        storage.update_product(product["id"], {"price": "39.90"})

        order = storage.place_order(member["id"], product["id"])

        assert order["price"] == 39.9

    def test_unknown_user_or_product(self, storage, member, product):
        with pytest.raises(NotFound):
            storage.place_order(999, product["id"])
        with pytest.raises(NotFound):
            storage.place_order(member["id"], 999)
        assert storage.get_product(product["id"])["stock"] == 3

    @pytest.mark.parametrize("price", [-1, "free"])
    def test_invalid_price_rejected_before_any_write(self, storage, member, product, price):
        with pytest.raises(ValidationError):
            storage.place_order(member["id"], product["id"], price=price)
        assert storage.get_product(product["id"])["stock"] == 3


class TestOrderQueries:
    def test_orders_for_user_newest_first(self, storage, member, product):
        first = storage.place_order(member["id"], product["id"])
        second = storage.place_order(member["id"], product["id"])
        other = storage.add_user({"username": "other"})
        storage.place_order(other["id"], product["id"])

        listed = storage.list_orders_for_user(member["id"])
        assert [o["id"] for o in listed] == [second["id"], first["id"]]
        assert all(o["product_name"] == "Grand Piece Online" for o in listed)

    def test_orders_outlive_deleted_products(self, storage, member, product):
        storage.place_order(member["id"], product["id"])
        storage.delete_product(product["id"])

        listed = storage.list_orders_for_user(member["id"])
        assert len(listed) == 1
        assert listed[0]["product_name"] is None

    def test_dashboard_stats(self, storage, member, product):
        empty = storage.dashboard_stats()
        assert empty["total_orders"] == 0
        assert empty["total_sales"] == 0

        storage.place_order(member["id"], product["id"])
        storage.place_order(member["id"], product["id"], price="1.50")

        stats = storage.dashboard_stats()
        assert stats == {
            "total_sales": 50.5,
            "active_users": 1,
            "total_products": 1,
            "total_orders": 2,
            "pending_orders": 0,
        }
