# models/commission/commission_boost.py
"""
CommissionBoost model - time-boxed override of one commission rate,
either for a single ambassador or global.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, Boolean, Text, ForeignKey
from models.base import Base, AuditMixin


class BoostType:
    AMBASSADOR_RATE = "ambassador_rate"
    SPONSOR_RATE = "sponsor_rate"
    BUYER_CASHBACK = "buyer_cashback"


class CommissionBoost(Base, AuditMixin):
    __tablename__ = 'commission_boosts'

    boostID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)  # null = global

    type = Column(String, nullable=False)  # ambassador_rate, sponsor_rate, buyer_cashback
    boostValue = Column(DECIMAL(5, 2), nullable=False)  # replacement rate, percent
    reason = Column(Text, nullable=True)

    startDate = Column(DateTime(timezone=True), nullable=False)
    endDate = Column(DateTime(timezone=True), nullable=True)
    maxUses = Column(Integer, nullable=True)
    currentUses = Column(Integer, default=0)
    isActive = Column(Boolean, default=True)

    def __repr__(self):
        return f"<CommissionBoost(boostID={self.boostID}, type={self.type}, value={self.boostValue})>"
