from decimal import Decimal

import pytest

from models import CashbackLedgerEntry, LedgerEntryType
from affiliate_system.errors import LedgerError, InsufficientBalanceError
from affiliate_system.services.cashback_ledger import CashbackLedger


@pytest.mark.asyncio
async def test_append_tracks_balance_after(session, make_user):
    buyer = make_user()
    ledger = CashbackLedger(session)

    first = await ledger.append(buyer.userID, LedgerEntryType.EARNED, Decimal("5"))
    second = await ledger.append(buyer.userID, LedgerEntryType.ADJUSTMENT, Decimal("-1.255"))
    session.commit()

    assert first.balanceAfter == Decimal("5.00")
    assert second.amount == Decimal("-1.26")
    assert second.balanceAfter == Decimal("3.74")
    assert await ledger.balance(buyer.userID) == Decimal("3.74")
    session.refresh(buyer)
    assert buyer.cashbackBalance == Decimal("3.74")


@pytest.mark.asyncio
async def test_append_for_unknown_user_fails(session):
    with pytest.raises(LedgerError):
        await CashbackLedger(session).append(404, LedgerEntryType.EARNED, Decimal("1"))


@pytest.mark.asyncio
async def test_clawback_reverses_once(session, make_user):
    buyer = make_user()
    ledger = CashbackLedger(session)
    await ledger.credit(buyer.userID, Decimal("5.00"), conversionId=42)
    session.commit()

    entry = await ledger.clawback(42, "Returned")
    session.commit()

    assert entry.type == LedgerEntryType.CLAWBACK
    assert entry.amount == Decimal("-5.00")
    assert await ledger.clawback(42, "Returned again") is None
    assert await ledger.balance(buyer.userID) == Decimal("0.00")


@pytest.mark.asyncio
async def test_clawback_without_earned_entry_is_noop(session):
    assert await CashbackLedger(session).clawback(77, "Returned") is None
    assert session.query(CashbackLedgerEntry).count() == 0


@pytest.mark.asyncio
async def test_withdraw(session, make_user):
    buyer = make_user()
    ledger = CashbackLedger(session)
    await ledger.append(buyer.userID, LedgerEntryType.EARNED, Decimal("25"))
    session.commit()

    entry = await ledger.withdraw(buyer.userID, Decimal("20"))

    assert entry.type == LedgerEntryType.WITHDRAWAL
    assert entry.amount == Decimal("-20.00")
    assert entry.balanceAfter == Decimal("5.00")
    assert [item.type for item in await ledger.history(buyer.userID)] == [
        LedgerEntryType.EARNED, LedgerEntryType.WITHDRAWAL
    ]


@pytest.mark.asyncio
async def test_withdraw_rejects_overdraft_and_small_amounts(session, make_user):
    buyer = make_user()
    ledger = CashbackLedger(session)
    await ledger.append(buyer.userID, LedgerEntryType.EARNED, Decimal("12"))
    session.commit()

    with pytest.raises(InsufficientBalanceError):
        await ledger.withdraw(buyer.userID, Decimal("50"))
    with pytest.raises(LedgerError):
        await ledger.withdraw(buyer.userID, Decimal("1"))

    assert await ledger.balance(buyer.userID) == Decimal("12.00")
    assert session.query(CashbackLedgerEntry).count() == 1
