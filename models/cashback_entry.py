# models/cashback_entry.py
"""
CashbackLedgerEntry model - one balance-affecting event for a buyer.
Append-only; balance is the running sum of amount.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from models.base import Base


class LedgerEntryType:
    EARNED = "earned"
    WITHDRAWAL = "withdrawal"
    CLAWBACK = "clawback"
    ADJUSTMENT = "adjustment"


class CashbackLedgerEntry(Base):
    __tablename__ = 'cashback_ledger'

    entryID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    conversionID = Column(Integer, ForeignKey('conversions.conversionID'), nullable=True, index=True)

    type = Column(String, nullable=False)  # earned, withdrawal, clawback, adjustment
    amount = Column(DECIMAL(12, 2), nullable=False)  # signed
    balanceAfter = Column(DECIMAL(12, 2), nullable=False)
    description = Column(Text, nullable=True)

    user = relationship('User', backref='cashback_entries')

    def __repr__(self):
        return f"<CashbackLedgerEntry(entryID={self.entryID}, user={self.userID}, {self.type} {self.amount})>"
