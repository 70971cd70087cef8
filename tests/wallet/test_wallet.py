"""Tests for WalletService: ledger rows, balance guard, amount validation."""
from decimal import Decimal

import pytest
from sqlalchemy import func

from keyshop.core.errors import InsufficientFunds, InvalidAmount, NotFound
from keyshop.models.wallet_transaction import KIND_DEPOSIT, KIND_WITHDRAWAL, WalletTransaction
from keyshop.services.wallet.service import WalletService, to_money


def _ledger_sum(db, user_id) -> Decimal:
    total = db.query(func.sum(WalletTransaction.amount)).filter(WalletTransaction.user_id == user_id).scalar()
    return to_money(total or 0)


class TestToMoney:
    def test_quantizes_to_cents(self):
        assert to_money(10) == Decimal("10.00")
        assert to_money("12.345") == Decimal("12.34")

    @pytest.mark.parametrize("raw", ["abc", "", None, "NaN", "Infinity"])
    def test_rejects_garbage(self, raw):
        with pytest.raises(InvalidAmount):
            to_money(raw)


class TestAdjustBalance:
    def test_round_trip(self, db, make_user):
        user = make_user()
        wallet = WalletService(db)

        assert wallet.adjust_balance(user.telegram_id, 100, "test") == Decimal("100.00")
        assert wallet.adjust_balance(user.telegram_id, -100, "test") == Decimal("0.00")
        db.commit()

        kinds = [t.kind for t in wallet.list_transactions(user.telegram_id)]
        assert sorted(kinds) == [KIND_DEPOSIT, KIND_WITHDRAWAL]
        assert _ledger_sum(db, user.id) == Decimal("0.00")

    def test_insufficient_funds_leaves_no_trace(self, db, make_user):
        user = make_user()
        wallet = WalletService(db)
        wallet.deposit(user.telegram_id, 50, "test")
        db.commit()

        with pytest.raises(InsufficientFunds) as exc:
            wallet.withdraw(user.telegram_id, 80, "test")
        assert exc.value.balance == Decimal("50.00")
        assert exc.value.requested == Decimal("80.00")
        db.commit()

        assert wallet.get_balance(user.telegram_id) == Decimal("50.00")
        assert len(wallet.list_transactions(user.telegram_id)) == 1

    def test_zero_delta_rejected(self, db, make_user):
        user = make_user()
        with pytest.raises(InvalidAmount):
            WalletService(db).adjust_balance(user.telegram_id, 0, "test")

    @pytest.mark.parametrize("amount", [0, -5])
    def test_deposit_must_be_positive(self, db, make_user, amount):
        user = make_user()
        with pytest.raises(InvalidAmount):
            WalletService(db).deposit(user.telegram_id, amount, "test")

    def test_unknown_user(self, db):
        with pytest.raises(NotFound):
            WalletService(db).get_balance(404)

    def test_balance_equals_ledger_sum(self, db, make_user):
        user = make_user()
        wallet = WalletService(db)
        for delta in (500, -120, "33.50", -13.5, 1000):
            wallet.adjust_balance(user.telegram_id, delta, "test")
        with pytest.raises(InsufficientFunds):
            wallet.adjust_balance(user.telegram_id, -5000, "test")
        db.commit()

        balance = wallet.get_balance(user.telegram_id)
        assert balance == Decimal("1400.00")
        assert balance == _ledger_sum(db, user.id)
