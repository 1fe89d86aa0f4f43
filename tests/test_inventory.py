"""Tests for stock helpers and the inventory ledger."""

import pytest

import inventory
from conftest import make_product
from errors import NotFoundError, StockError
from inventory import InventoryLedger


def _totals_match(product) -> bool:
    return product.total_quantity == sum(r.quantity for r in product.inventory)


class TestStockMutations:
    def test_decrement(self):
        product = make_product(skus={"A": 5, "B": 2})
        inventory.decrement(product, "A", 3)

        assert inventory.find_record(product, "A").quantity == 2
        assert product.total_quantity == 4
        assert _totals_match(product)

    def test_decrement_floors_at_zero(self):
        product = make_product(skus={"A": 2})
        inventory.decrement(product, "A", 5)

        assert inventory.find_record(product, "A").quantity == 0
        assert product.total_quantity == 0

    def test_restore(self):
        product = make_product(skus={"A": 1, "B": 1})
        inventory.restore(product, "B", 4)

        assert inventory.find_record(product, "B").quantity == 5
        assert _totals_match(product)

    def test_set_quantity(self):
        product = make_product(skus={"A": 1, "B": 1})
        inventory.set_quantity(product, "A", 9)

        assert product.total_quantity == 10

    def test_set_negative_rejected(self):
        with pytest.raises(StockError):
            inventory.set_quantity(make_product(), "SKU-1", -1)

    def test_unknown_sku(self):
        with pytest.raises(NotFoundError):
            inventory.decrement(make_product(), "NOPE", 1)

    def test_stock_flags(self):
        product = make_product(skus={"A": 0, "B": 3})

        assert inventory.is_in_stock(product)
        assert not inventory.is_variant_in_stock(product, "A")
        assert inventory.is_variant_in_stock(product, "B")
        assert inventory.is_low_stock(inventory.find_record(product, "B"))

    def test_variant_key_is_order_independent(self):
        assert inventory.variant_key({"size": "M", "color": "red"}) == inventory.variant_key({"color": "red", "size": "M"})


class TestLedger:
    def test_reserve_and_release(self, insert_product, stock_of, mongo_db):
        pid = insert_product(skus={"A": 5, "B": 2})
        ledger = InventoryLedger(mongo_db)

        ledger.reserve(pid, "A", 3)
        assert stock_of(pid, "A") == (2, 4, 3)

        assert ledger.release(pid, "A", 3)
        assert stock_of(pid, "A") == (5, 7, 0)

    def test_reserve_refuses_oversell(self, insert_product, stock_of, mongo_db):
        pid = insert_product(skus={"A": 2})
        ledger = InventoryLedger(mongo_db)

        with pytest.raises(StockError):
            ledger.reserve(pid, "A", 3)
        assert stock_of(pid, "A") == (2, 2, 0)

    def test_last_unit_reserved_once(self, insert_product, stock_of, mongo_db):
        pid = insert_product(skus={"A": 1})
        ledger = InventoryLedger(mongo_db)

        ledger.reserve(pid, "A", 1)
        with pytest.raises(StockError):
            ledger.reserve(pid, "A", 1)
        assert stock_of(pid, "A") == (0, 0, 1)

    def test_release_unknown_sku(self, insert_product, mongo_db):
        pid = insert_product(skus={"A": 1})
        assert InventoryLedger(mongo_db).release(pid, "NOPE", 1) is False
