# affiliate_system/services/tier_service.py
"""
Tier management service - trailing validated-sale counts and the daily
recomputation job.
"""
from typing import Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models import User, Conversion, TierHistory
from affiliate_system.config.tiers import VALIDATED_STATUSES
from affiliate_system.services.commission_service import tierFor
from affiliate_system.utils.time_machine import timeMachine
from affiliate_system.events.event_bus import eventBus, AffiliateEvents
import config

logger = logging.getLogger(__name__)


class TierService:
    """Service for deriving ambassador tiers from validated sales."""

    def __init__(self, session: Session, windowDays: int = None):
        self.session = session
        self.windowDays = windowDays or config.TIER_WINDOW_DAYS

    async def trailingSaleCount(self, userId: int) -> int:
        """Confirmed or paid conversions confirmed within the trailing window."""
        since = timeMachine.daysAgo(self.windowDays)
        return self.session.query(func.count(Conversion.conversionID)).filter(
            Conversion.ambassadorID == userId,
            Conversion.status.in_(VALIDATED_STATUSES),
            Conversion.confirmedAt >= since
        ).scalar() or 0

    async def recomputeTier(self, userId: int) -> Optional[str]:
        """
        Refresh the cached count and tier of one ambassador.
        Returns the new tier if it changed, None otherwise.
        """
        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            return None

        count = await self.trailingSaleCount(userId)
        newTier = tierFor(count).tier.value
        oldTier = user.tier

        user.trailingSaleCount = count
        user.tierUpdatedAt = timeMachine.now

        if oldTier == newTier:
            return None

        user.tier = newTier
        self.session.add(TierHistory(
            userID=userId,
            previousTier=oldTier,
            newTier=newTier,
            trailingSaleCount=count
        ))

        logger.info(f"User {userId} tier updated: {oldTier} -> {newTier} ({count} sales)")

        await eventBus.emit(AffiliateEvents.TIER_CHANGED, {
            "userId": userId,
            "previousTier": oldTier,
            "newTier": newTier,
            "trailingSaleCount": count
        })
        return newTier

    async def recomputeAll(self) -> Dict[str, int]:
        """Recompute tiers for all ambassadors. Safe to rerun."""
        results = {
            "checked": 0,
            "updated": 0,
            "errors": 0
        }

        userIds = [row.userID for row in self.session.query(User.userID).filter(User.isAmbassador == True).all()]

        for userId in userIds:
            try:
                results["checked"] += 1
                if await self.recomputeTier(userId):
                    results["updated"] += 1
                self.session.commit()
            except Exception as e:
                self.session.rollback()
                logger.error(f"Error recomputing tier for user {userId}: {e}")
                results["errors"] += 1

        logger.info(
            f"Tier recompute complete: checked={results['checked']}, "
            f"updated={results['updated']}, errors={results['errors']}"
        )

        return results
