# models/attribution.py
"""
Attribution models: long-lived visitor identities, last-click attribution
records and the raw visit log.
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from datetime import datetime, timezone
from models.base import Base


class Visitor(Base):
    """Anonymous visitor identity, independent of attribution."""
    __tablename__ = 'visitors'

    visitorID = Column(String(64), primary_key=True)
    createdAt = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    expiresAt = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<Visitor(visitorID={self.visitorID}, expiresAt={self.expiresAt})>"


class AttributionRecord(Base):
    """Current last-click attribution for a visitor. Overwritten on every ref click."""
    __tablename__ = 'attribution_records'

    visitorID = Column(String(64), primary_key=True)
    ambassadorRef = Column(String(32), nullable=False)
    setAt = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<AttributionRecord(visitor={self.visitorID}, ref={self.ambassadorRef}, setAt={self.setAt})>"


class Visit(Base):
    """One landing on the site through a ref link. Append-only."""
    __tablename__ = 'visits'

    visitID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    visitorID = Column(String(64), nullable=False, index=True)
    ambassadorRef = Column(String(32), nullable=False)
    ambassadorID = Column(Integer, ForeignKey('users.userID'), nullable=True)

    landingPage = Column(Text, nullable=True)
    sourceUrl = Column(Text, nullable=True)
    ipHash = Column(String(64), nullable=True)  # sha256, raw ip is never stored
    userAgent = Column(Text, nullable=True)

    def __repr__(self):
        return f"<Visit(visitID={self.visitID}, visitor={self.visitorID}, ref={self.ambassadorRef})>"
