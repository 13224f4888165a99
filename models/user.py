# models/user.py
"""
User model - ambassadors and buyers share one table.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from models.base import Base


class User(Base):
    __tablename__ = 'users'

    # Primary identification
    userID = Column(Integer, primary_key=True, autoincrement=True)
    referralCode = Column(String(32), unique=True, nullable=True, index=True)  # ambassador ref, null for buyers
    email = Column(String, nullable=True)
    firstname = Column(String, nullable=True)
    surname = Column(String, nullable=True)

    # Sponsor (level-1 parent). Level 2 is derived by following one hop further.
    sponsorID = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)
    joinedAt = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # System fields
    status = Column(String, default="active")  # active, blocked, deleted
    isAmbassador = Column(Boolean, default=False, index=True)

    # Tier cache - recomputed by TierService, never the source of truth
    tier = Column(String, default="beginner", index=True)  # beginner, active, performer, expert, elite
    trailingSaleCount = Column(Integer, default=0)
    tierUpdatedAt = Column(DateTime(timezone=True), nullable=True)

    # Cashback balance cache - running sum of the cashback ledger
    cashbackBalance = Column(DECIMAL(12, 2), default=0)

    sponsor = relationship('User', remote_side=[userID], backref='referrals')

    @classmethod
    def findActiveAmbassador(cls, session, referralCode: str):
        """Returns the active ambassador owning the referral code, or None."""
        if not referralCode:
            return None
        return session.query(cls).filter_by(
            referralCode=referralCode,
            isAmbassador=True,
            status="active"
        ).first()

    def __repr__(self):
        return f"<User(userID={self.userID}, ref={self.referralCode}, tier={self.tier})>"
