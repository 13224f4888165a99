# affiliate_system/services/fraud_service.py
"""
Best-effort fraud checks run after a conversion is created.
"""
from datetime import timedelta
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models import User, Conversion, FraudFlag
from affiliate_system.services.click_service import ClickService
from affiliate_system.utils.time_machine import timeMachine
from affiliate_system.events.event_bus import eventBus, AffiliateEvents
import config

logger = logging.getLogger(__name__)


class FraudService:
    """Flags suspicious ambassadors for manual review. Never blocks a conversion."""

    def __init__(self, session: Session, clicks: ClickService = None):
        self.session = session
        self.clicks = clicks or ClickService(session)

    async def checkConversion(self, conversion: Conversion) -> List[str]:
        """
        Run every check; returns the flag types created.
        Flags are announced only after they are committed.
        """
        if not conversion.ambassadorID:
            return []

        flags = []
        for check in (self._checkSelfBuy, self._checkClickSpam,
                      self._checkSelfReferral, self._checkRapidConversions):
            flag = await check(conversion)
            if flag is not None:
                flags.append(flag)

        if not flags:
            return []

        self.session.commit()
        for flag in flags:
            await eventBus.emit(AffiliateEvents.FRAUD_FLAGGED, {
                "userId": flag.userID,
                "type": flag.type,
                "severity": flag.severity
            })
        return [flag.type for flag in flags]

    def _flagIfNew(self, userId: int, flagType: str, severity: str, details: Dict) -> Optional[FraudFlag]:
        """Create a flag unless a pending one of the same type exists for the user."""
        existing = self.session.query(FraudFlag).filter_by(
            userID=userId,
            type=flagType,
            status="pending"
        ).first()
        if existing:
            return None

        flag = FraudFlag(
            userID=userId,
            type=flagType,
            severity=severity,
            details=details
        )
        self.session.add(flag)
        logger.warning(f"Fraud flag {flagType} ({severity}) for user {userId}: {details}")
        return flag

    async def _checkSelfBuy(self, conversion: Conversion):
        if conversion.buyerUserID and conversion.buyerUserID == conversion.ambassadorID:
            return self._flagIfNew(conversion.ambassadorID, "self_buy", "high", {
                "conversionId": conversion.conversionID,
                "timestamp": timeMachine.now.isoformat()
            })
        return None

    async def _checkClickSpam(self, conversion: Conversion):
        clicks = await self.clicks.countRecentClicks(conversion.ambassadorID, hours=1)
        if clicks > config.CLICK_SPAM_THRESHOLD:
            return self._flagIfNew(conversion.ambassadorID, "click_spam", "medium", {
                "conversionId": conversion.conversionID,
                "clicksLastHour": clicks
            })
        return None

    async def _checkSelfReferral(self, conversion: Conversion):
        user = self.session.query(User).filter_by(userID=conversion.ambassadorID).first()
        if user and user.sponsorID == user.userID:
            return self._flagIfNew(user.userID, "self_referral", "high", {
                "conversionId": conversion.conversionID
            })
        return None

    async def _checkRapidConversions(self, conversion: Conversion):
        since = timeMachine.now - timedelta(hours=24)
        count = self.session.query(func.count(Conversion.conversionID)).filter(
            Conversion.ambassadorID == conversion.ambassadorID,
            Conversion.createdAt >= since
        ).scalar() or 0

        if count > config.RAPID_CONVERSION_THRESHOLD:
            return self._flagIfNew(conversion.ambassadorID, "rapid_conversions", "medium", {
                "conversionId": conversion.conversionID,
                "conversionsLast24h": count
            })
        return None
