# models/commission/tier_history.py
"""
TierHistory model - tracks tier changes produced by the recomputation job.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from models.base import Base


class TierHistory(Base):
    __tablename__ = 'tier_history'

    historyID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relations
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)

    # Tier details
    previousTier = Column(String, nullable=True)
    newTier = Column(String, nullable=False)

    # Qualification metric at time of change
    trailingSaleCount = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)

    # Relationships
    user = relationship('User', backref='tier_history')

    def __repr__(self):
        return f"<TierHistory(user={self.userID}, tier={self.newTier}, date={self.createdAt})>"
