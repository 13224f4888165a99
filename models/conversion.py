# models/conversion.py
"""
Conversion model - one purchase referred through the platform.
Owned exclusively by ConversionService once created.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, Text, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class ConversionStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    CANCELLED = "cancelled"

    TERMINAL = (PAID, CANCELLED)


class Conversion(Base, AuditMixin):
    __tablename__ = 'conversions'
    __table_args__ = (
        UniqueConstraint('programID', 'orderRef', name='uq_conversion_program_order'),
    )

    conversionID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    programID = Column(Integer, ForeignKey('affiliate_programs.programID'), nullable=False, index=True)
    ambassadorID = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)  # frozen at creation
    sponsorL1ID = Column(Integer, ForeignKey('users.userID'), nullable=True)
    sponsorL2ID = Column(Integer, ForeignKey('users.userID'), nullable=True)
    buyerUserID = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)
    clickID = Column(Integer, ForeignKey('click_events.clickID'), nullable=True)

    ambassadorRef = Column(String(32), nullable=True)  # raw ref as reported
    orderRef = Column(String, nullable=False)
    amount = Column(DECIMAL(12, 2), nullable=False)  # merchant currency
    reportedCommission = Column(DECIMAL(12, 2), nullable=True)  # network-reported, overrides program rate

    # Shares - ambassador + sponsors + platform == commissionTotal
    commissionTotal = Column(DECIMAL(12, 2), default=0)
    ambassadorShare = Column(DECIMAL(12, 2), default=0)
    sponsorL1Share = Column(DECIMAL(12, 2), default=0)
    sponsorL2Share = Column(DECIMAL(12, 2), default=0)
    buyerShare = Column(DECIMAL(12, 2), default=0)  # cashback, funded outside commissionTotal
    platformShare = Column(DECIMAL(12, 2), default=0)

    # Snapshot of rates applied (percent)
    appliedTier = Column(String, nullable=True)
    appliedAmbassadorRate = Column(DECIMAL(5, 2), nullable=True)
    appliedSponsorL1Rate = Column(DECIMAL(5, 2), nullable=True)
    appliedSponsorL2Rate = Column(DECIMAL(5, 2), nullable=True)
    appliedBuyerRate = Column(DECIMAL(5, 2), nullable=True)

    # Lifecycle
    status = Column(String, default=ConversionStatus.PENDING, nullable=False, index=True)
    confirmedAt = Column(DateTime(timezone=True), nullable=True, index=True)
    paidAt = Column(DateTime(timezone=True), nullable=True)
    cancelledAt = Column(DateTime(timezone=True), nullable=True)
    cancelReason = Column(Text, nullable=True)

    attributionMethod = Column(String, nullable=True)  # postback, csv_import, api, manual
    needsReview = Column(Boolean, default=False)  # set on commission configuration errors
    reviewNote = Column(Text, nullable=True)

    program = relationship('AffiliateProgram')
    ambassador = relationship('User', foreign_keys=[ambassadorID])
    buyer = relationship('User', foreign_keys=[buyerUserID])

    @property
    def isTerminal(self) -> bool:
        return self.status in ConversionStatus.TERMINAL

    def __repr__(self):
        return f"<Conversion(conversionID={self.conversionID}, order={self.orderRef}, status={self.status})>"
