# models/click_event.py
"""
ClickEvent model - one outbound redirect. Append-only.
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from models.base import Base


class ClickEvent(Base):
    __tablename__ = 'click_events'

    clickID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    visitorID = Column(String(64), nullable=False, index=True)
    visitID = Column(Integer, ForeignKey('visits.visitID'), nullable=True)
    programID = Column(Integer, ForeignKey('affiliate_programs.programID'), nullable=False, index=True)

    # Attribution at click time; null for unattributed traffic
    ambassadorRef = Column(String(32), nullable=True)
    ambassadorID = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)
    buyerUserID = Column(Integer, ForeignKey('users.userID'), nullable=True)

    productUrl = Column(Text, nullable=True)
    resolvedUrl = Column(Text, nullable=False)
    subIdSent = Column(String, nullable=True)

    program = relationship('AffiliateProgram')
    ambassador = relationship('User', foreign_keys=[ambassadorID])

    def __repr__(self):
        return f"<ClickEvent(clickID={self.clickID}, visitor={self.visitorID}, program={self.programID})>"
