"""Tests for the cart aggregate."""

import pytest

import cart as carts
from conftest import make_coupon, make_product
from errors import CouponError, NotFoundError, StockError, ValidationError
from schemas import CouponUsage, InventoryRecord, UsageLimit


def _consistent(cart) -> bool:
    t = cart.totals
    return abs(t.total - round(t.subtotal - t.discount + t.tax + t.shipping, 2)) < 1e-9


class TestAddItem:
    def test_adds_line_and_prices_cart(self, empty_cart, policy):
        product = make_product(price=20.0)
        line = carts.add_item(empty_cart, "p1", product, "SKU-1", 2, None, policy)

        assert line.unit_price == 20.0
        assert line.name == "Tee"
        assert empty_cart.totals.subtotal == 40.0
        assert carts.item_count(empty_cart) == 2
        assert _consistent(empty_cart)

    def test_merges_same_sku(self, empty_cart, policy):
        product = make_product()
        carts.add_item(empty_cart, "p1", product, "SKU-1", 2, None, policy)
        carts.add_item(empty_cart, "p1", product, "SKU-1", 3, None, policy)

        assert len(empty_cart.items) == 1
        assert empty_cart.items[0].quantity == 5

    def test_insufficient_stock_leaves_cart_unmodified(self, empty_cart, policy):
        product = make_product(skus={"SKU-1": 3})
        before = empty_cart.model_copy(deep=True)

        with pytest.raises(StockError) as exc_info:
            carts.add_item(empty_cart, "p1", product, "SKU-1", 5, None, policy)

        assert str(exc_info.value) == "Only 3 items available in stock"
        assert exc_info.value.available == 3
        assert empty_cart == before

    def test_merge_checks_combined_quantity(self, empty_cart, policy):
        product = make_product(skus={"SKU-1": 4})
        carts.add_item(empty_cart, "p1", product, "SKU-1", 3, None, policy)

        with pytest.raises(StockError):
            carts.add_item(empty_cart, "p1", product, "SKU-1", 2, None, policy)
        assert empty_cart.items[0].quantity == 3

    def test_variant_lookup_ignores_key_order(self, empty_cart, policy):
        product = make_product(skus={})
        product.inventory = [
            InventoryRecord(sku="TEE-S", quantity=5, variant_combination={"size": "S", "color": "black"}),
            InventoryRecord(sku="TEE-M", quantity=5, variant_combination={"size": "M", "color": "black"}),
        ]
        line = carts.add_item(empty_cart, "p1", product, None, 1, {"color": "black", "size": "M"}, policy)

        assert line.sku == "TEE-M"

    def test_unknown_variant(self, empty_cart, policy):
        with pytest.raises(NotFoundError):
            carts.add_item(empty_cart, "p1", make_product(), "NOPE", 1, None, policy)

    def test_inactive_product(self, empty_cart, policy):
        with pytest.raises(NotFoundError):
            carts.add_item(empty_cart, "p1", make_product(is_active=False), "SKU-1", 1, None, policy)

    def test_quantity_must_be_positive(self, empty_cart, policy):
        with pytest.raises(ValidationError):
            carts.add_item(empty_cart, "p1", make_product(), "SKU-1", 0, None, policy)


class TestUpdateAndRemove:
    def test_update_quantity(self, empty_cart, policy):
        product = make_product()
        line = carts.add_item(empty_cart, "p1", product, "SKU-1", 1, None, policy)
        carts.update_quantity(empty_cart, line.id, 4, product, policy)

        assert empty_cart.items[0].quantity == 4
        assert empty_cart.totals.subtotal == 80.0

    def test_update_to_zero_removes(self, empty_cart, policy):
        product = make_product()
        line = carts.add_item(empty_cart, "p1", product, "SKU-1", 1, None, policy)
        carts.update_quantity(empty_cart, line.id, 0, product, policy)

        assert carts.is_empty(empty_cart)
        assert empty_cart.totals.total == 0.0

    def test_update_over_stock(self, empty_cart, policy):
        product = make_product(skus={"SKU-1": 2})
        line = carts.add_item(empty_cart, "p1", product, "SKU-1", 1, None, policy)

        with pytest.raises(StockError):
            carts.update_quantity(empty_cart, line.id, 3, product, policy)
        assert empty_cart.items[0].quantity == 1

    def test_update_unknown_item(self, empty_cart, policy):
        with pytest.raises(NotFoundError):
            carts.update_quantity(empty_cart, "missing", 1, None, policy)

    def test_remove_and_clear(self, empty_cart, policy):
        product = make_product(skus={"A": 5, "B": 5})
        first = carts.add_item(empty_cart, "p1", product, "A", 1, None, policy)
        carts.add_item(empty_cart, "p1", product, "B", 1, None, policy)

        carts.remove_item(empty_cart, first.id, policy)
        assert [i.sku for i in empty_cart.items] == ["B"]

        carts.clear(empty_cart, policy)
        assert carts.is_empty(empty_cart)
        assert empty_cart.coupon is None


class TestCoupons:
    def _filled(self, cart, policy):
        tee = make_product(price=20.0)
        tote = make_product(price=15.0, skus={"TOTE": 5}, name="Tote")
        carts.add_item(cart, "p1", tee, "SKU-1", 2, None, policy)
        carts.add_item(cart, "p2", tote, "TOTE", 1, None, policy)
        return cart

    def test_apply_coupon(self, empty_cart, policy, now):
        cart = self._filled(empty_cart, policy)
        discount = carts.apply_coupon(cart, make_coupon(now), "u1", ["apparel"], policy, now=now)

        assert discount == 5.5
        assert cart.coupon.code == "SAVE10"
        assert cart.totals.total == 59.45

    def test_apply_does_not_record_usage(self, empty_cart, policy, now):
        cart = self._filled(empty_cart, policy)
        coupon = make_coupon(now, usage_limit=UsageLimit(per_user=1))
        carts.apply_coupon(cart, coupon, "u1", [], policy, now=now)

        assert coupon.usage_count == 0
        assert coupon.used_by == []

    def test_per_user_limit_leaves_coupon_state_unchanged(self, empty_cart, policy, now):
        cart = self._filled(empty_cart, policy)
        coupon = make_coupon(now, usage_limit=UsageLimit(per_user=1))
        carts.apply_coupon(cart, coupon, "u1", [], policy, now=now)
        before = cart.model_copy(deep=True)

        coupon.used_by.append(CouponUsage(user_id="u1", count=1, last_used=now))
        with pytest.raises(CouponError) as exc_info:
            carts.apply_coupon(cart, coupon, "u1", [], policy, now=now)

        assert exc_info.value.reason == "Per-user limit reached"
        assert cart.coupon == before.coupon
        assert cart.totals == before.totals

    def test_empty_cart_rejected(self, empty_cart, policy, now):
        with pytest.raises(ValidationError):
            carts.apply_coupon(empty_cart, make_coupon(now), "u1", [], policy, now=now)

    def test_remove_coupon(self, empty_cart, policy, now):
        cart = self._filled(empty_cart, policy)
        carts.apply_coupon(cart, make_coupon(now), "u1", [], policy, now=now)
        carts.remove_coupon(cart, policy)

        assert cart.coupon is None
        assert cart.totals.discount == 0.0
        assert _consistent(cart)


class TestSync:
    def test_sync_clamps_and_drops(self, empty_cart, policy):
        products = {
            "p1": make_product(skus={"SKU-1": 2}),
            "p2": make_product(skus={"SKU-2": 0}),
            "p3": make_product(is_active=False),
        }
        entries = [
            {"product_id": "p1", "sku": "SKU-1", "quantity": 5},
            {"product_id": "p2", "sku": "SKU-2", "quantity": 1},
            {"product_id": "p3", "sku": "SKU-1", "quantity": 1},
            {"product_id": "missing", "sku": "X", "quantity": 1},
        ]
        carts.sync_items(empty_cart, entries, products, policy)

        assert len(empty_cart.items) == 1
        assert empty_cart.items[0].quantity == 2
        assert empty_cart.totals.subtotal == 40.0
