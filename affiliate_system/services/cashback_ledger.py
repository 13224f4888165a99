# affiliate_system/services/cashback_ledger.py
"""
Cashback ledger - append-only balance history per buyer.
"""
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models import User, CashbackLedgerEntry, LedgerEntryType
from affiliate_system.errors import LedgerError, InsufficientBalanceError
from affiliate_system.services.commission_service import round2
from affiliate_system.utils.time_machine import timeMachine
from affiliate_system.events.event_bus import eventBus, AffiliateEvents
import config

logger = logging.getLogger(__name__)

ENTRY_EVENTS = {
    LedgerEntryType.EARNED: AffiliateEvents.CASHBACK_CREDITED,
    LedgerEntryType.CLAWBACK: AffiliateEvents.CASHBACK_CLAWED_BACK,
}


class CashbackLedger:
    """
    Appends ledger entries and keeps User.cashbackBalance in sync.

    append(), credit() and clawback() do not commit and emit nothing: they run
    inside the caller's transaction, which announces the entries after commit.
    The buyer row is locked for the append so balanceAfter stays consistent
    per buyer; appends for different buyers never wait on each other.
    """

    def __init__(self, session: Session):
        self.session = session

    def _lockUser(self, userId: int) -> User:
        user = self.session.query(User).filter_by(userID=userId).with_for_update().first()
        if not user:
            raise LedgerError(f"Cashback owner {userId} not found", {"userId": userId})
        return user

    async def append(
            self,
            userId: int,
            entryType: str,
            amount: Decimal,
            conversionId: Optional[int] = None,
            description: Optional[str] = None
    ) -> CashbackLedgerEntry:
        user = self._lockUser(userId)

        amount = round2(Decimal(str(amount)))
        balanceAfter = round2(Decimal(str(user.cashbackBalance or 0)) + amount)

        entry = CashbackLedgerEntry(
            createdAt=timeMachine.now,
            userID=userId,
            conversionID=conversionId,
            type=entryType,
            amount=amount,
            balanceAfter=balanceAfter,
            description=description
        )
        self.session.add(entry)
        user.cashbackBalance = balanceAfter
        self.session.flush()

        logger.info(f"Cashback {entryType} {amount} for user {userId}, balance {balanceAfter}")
        return entry

    async def credit(self, userId: int, amount: Decimal, conversionId: int) -> CashbackLedgerEntry:
        return await self.append(
            userId,
            LedgerEntryType.EARNED,
            amount,
            conversionId=conversionId,
            description=f"Cashback for conversion #{conversionId}"
        )

    async def clawback(self, conversionId: int, reason: str) -> Optional[CashbackLedgerEntry]:
        """
        Reverse the earned entry of a conversion with an entry of the same
        magnitude. Returns None if nothing was earned or it was already reversed.
        """
        earned = self.session.query(CashbackLedgerEntry).filter_by(
            conversionID=conversionId,
            type=LedgerEntryType.EARNED
        ).first()
        if not earned:
            return None

        already = self.session.query(CashbackLedgerEntry).filter_by(
            conversionID=conversionId,
            type=LedgerEntryType.CLAWBACK
        ).first()
        if already:
            logger.warning(f"Conversion {conversionId} cashback already clawed back")
            return None

        return await self.append(
            earned.userID,
            LedgerEntryType.CLAWBACK,
            -Decimal(str(earned.amount)),
            conversionId=conversionId,
            description=f"Cancellation of conversion #{conversionId}: {reason}"
        )

    async def announce(self, entry: Optional[CashbackLedgerEntry]):
        """Emit the entry's event. Call only once the entry is committed."""
        eventName = ENTRY_EVENTS.get(entry.type) if entry is not None else None
        if eventName is None:
            return
        await eventBus.emit(eventName, {
            "userId": entry.userID,
            "conversionId": entry.conversionID,
            "amount": str(entry.amount)
        })

    async def withdraw(self, userId: int, amount: Decimal) -> CashbackLedgerEntry:
        """Withdrawal requested by the payout handler. Commits."""
        amount = round2(Decimal(str(amount)))
        if amount < config.MIN_CASHBACK_WITHDRAWAL:
            raise LedgerError(
                f"Withdrawal below minimum {config.MIN_CASHBACK_WITHDRAWAL}",
                {"userId": userId, "amount": str(amount)}
            )

        try:
            user = self._lockUser(userId)
            available = Decimal(str(user.cashbackBalance or 0))
            if amount > available:
                raise InsufficientBalanceError(userId, amount, available)

            entry = await self.append(userId, LedgerEntryType.WITHDRAWAL, -amount,
                                      description="Cashback withdrawal")
            self.session.commit()
            return entry
        except Exception:
            self.session.rollback()
            raise

    async def balance(self, userId: int) -> Decimal:
        """Running sum of the ledger."""
        total = self.session.query(func.sum(CashbackLedgerEntry.amount)).filter(
            CashbackLedgerEntry.userID == userId
        ).scalar()
        return round2(Decimal(str(total or 0)))

    async def history(self, userId: int) -> List[CashbackLedgerEntry]:
        return self.session.query(CashbackLedgerEntry).filter_by(
            userID=userId
        ).order_by(CashbackLedgerEntry.entryID).all()
