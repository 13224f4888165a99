# models/audit_log.py
from sqlalchemy import Column, Integer, String, DateTime, JSON
from datetime import datetime, timezone
from models.base import Base


class AuditLog(Base):
    __tablename__ = 'audit_logs'

    logID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    actorID = Column(String, nullable=True)  # pre-authenticated caller, "system" for jobs
    action = Column(String, nullable=False)  # conversion.confirmed, conversion.cancelled, ...
    entityType = Column(String, nullable=False)
    entityID = Column(String, nullable=True)
    oldValues = Column(JSON, nullable=True)
    newValues = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<AuditLog({self.action} {self.entityType}#{self.entityID})>"
