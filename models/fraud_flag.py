# models/fraud_flag.py
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from datetime import datetime, timezone
from models.base import Base


class FraudFlag(Base):
    __tablename__ = 'fraud_flags'

    flagID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    type = Column(String, nullable=False)  # self_buy, click_spam, self_referral, rapid_conversions
    severity = Column(String, default="medium")  # low, medium, high, critical
    status = Column(String, default="pending")  # pending, reviewed, dismissed
    details = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<FraudFlag(user={self.userID}, type={self.type}, status={self.status})>"
