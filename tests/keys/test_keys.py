"""Tests for KeyStoreService: adding keys, duplicates, reservation."""
from unittest.mock import patch

import pytest

from keyshop.core.errors import AlreadyUsed, DuplicateKey, NotFound
from keyshop.models.license_key import LicenseKey
from keyshop.services.keys.service import KeyStoreService
from keyshop.services.orders.service import OrderService


class TestAddKey:
    def test_value_is_trimmed(self, db, make_product):
        product = make_product()
        key = KeyStoreService(db).add_key(product.id, "  AAAA-BBBB  ")
        assert key.value == "AAAA-BBBB"
        assert key.used is False
        assert key.order_id is None

    def test_empty_value_rejected(self, db, make_product):
        product = make_product()
        with pytest.raises(ValueError):
            KeyStoreService(db).add_key(product.id, "   ")

    def test_unknown_product(self, db):
        with pytest.raises(NotFound):
            KeyStoreService(db).add_key(404, "AAAA")

    def test_duplicate_value_across_products(self, db, make_product):
        first = make_product(keys=["AAAA"])
        second = make_product(name="Windows 11 Pro", price=2999)
        with pytest.raises(DuplicateKey):
            KeyStoreService(db).add_key(second.id, "AAAA")
        assert db.query(LicenseKey).count() == 1
        assert KeyStoreService(db).count_free(first.id) == 1

    def test_bulk_add_reports_duplicates(self, db, make_product):
        product = make_product(keys=["K-1"])
        added, duplicates = KeyStoreService(db).add_keys(product.id, ["K-1", "K-2", "", "K-3", "K-2"])
        assert added == 2
        assert duplicates == ["K-1", "K-2"]
        assert KeyStoreService(db).count_free(product.id) == 3

    def test_conflicting_insert_keeps_rest_of_batch(self, db, make_product):
        product = make_product(keys=["B"])
        store = KeyStoreService(db)

        # "B" arrives from a concurrent upload after the existence check
        with patch.object(store, "_value_exists", return_value=False):
            added, duplicates = store.add_keys(product.id, ["A", "B", "C"])
        db.commit()

        assert added == 2
        assert duplicates == ["B"]
        assert sorted(k.value for k in store.list_keys(product.id)) == ["A", "B", "C"]


class TestReserve:
    def test_find_free_key_lowest_id_first(self, db, make_product):
        product = make_product(keys=["K-1", "K-2"])
        assert KeyStoreService(db).find_free_key(product.id).value == "K-1"

    def test_find_free_key_empty_pool(self, db, make_product):
        product = make_product()
        with pytest.raises(NotFound):
            KeyStoreService(db).find_free_key(product.id)

    def test_reserve_marks_key_used(self, db, make_product):
        product = make_product(keys=["K-1"])
        keys = KeyStoreService(db)
        order = OrderService(db).create(1001, product.id)
        key = keys.find_free_key(product.id)

        keys.reserve(key.id, order.id)
        db.commit()
        db.refresh(key)

        assert key.used is True
        assert key.order_id == order.id
        assert key.used_at is not None
        assert keys.count_free(product.id) == 0

    def test_second_reserve_loses(self, db, make_product):
        product = make_product(keys=["K-1"])
        keys = KeyStoreService(db)
        orders = OrderService(db)
        first = orders.create(1001, product.id)
        second = orders.create(1002, product.id)
        key = keys.find_free_key(product.id)

        keys.reserve(key.id, first.id)
        with pytest.raises(AlreadyUsed):
            keys.reserve(key.id, second.id)
        db.commit()
        db.refresh(key)
        assert key.order_id == first.id

    def test_list_keys_only_free(self, db, make_product):
        product = make_product(keys=["K-1", "K-2"])
        keys = KeyStoreService(db)
        order = OrderService(db).create(1001, product.id)
        keys.reserve(keys.find_free_key(product.id).id, order.id)
        db.commit()

        assert [k.value for k in keys.list_keys(product.id, only_free=True)] == ["K-2"]
        assert len(keys.list_keys()) == 2
