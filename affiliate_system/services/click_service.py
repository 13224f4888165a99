# affiliate_system/services/click_service.py
"""
Click tracker - resolves the outbound merchant url and records the click.
"""
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import timedelta
import logging

from models import User, AffiliateProgram, ClickEvent
from affiliate_system.services.attribution_service import AttributionService
from affiliate_system.utils.url_templates import resolveRedirectUrl, isUsableRedirect
from affiliate_system.utils.time_machine import timeMachine
from affiliate_system.events.event_bus import eventBus, AffiliateEvents

logger = logging.getLogger(__name__)


class ClickService:
    """Service for outbound redirects. Never raises on the visitor path."""

    def __init__(self, session: Session, attribution: AttributionService = None):
        self.session = session
        self.attribution = attribution or AttributionService(session)

    async def trackClick(
            self,
            visitorId: str,
            ambassadorRef: Optional[str],
            programId: int,
            productUrl: Optional[str] = None,
            buyerUserId: Optional[int] = None
    ) -> Optional[str]:
        """
        Record a click and return the url to redirect to.
        Returns None when the merchant is unknown or the url is unusable;
        the caller shows a generic error page instead of redirecting.
        """
        program = self.session.query(AffiliateProgram).filter_by(programID=programId).first()
        if not program or not program.isActive:
            logger.warning(f"Click from visitor {visitorId} for unknown merchant {programId}")
            await eventBus.emit(AffiliateEvents.CLICK_MERCHANT_UNKNOWN, {
                "visitorId": visitorId,
                "programId": programId
            })
            return None

        if not ambassadorRef:
            ambassadorRef = await self.attribution.getAttribution(visitorId)

        ambassador = User.findActiveAmbassador(self.session, ambassadorRef)
        resolution = resolveRedirectUrl(program, ambassadorRef, productUrl)
        latestVisit = await self.attribution.getLatestVisit(visitorId, ambassadorRef) if ambassadorRef else None

        click = ClickEvent(
            createdAt=timeMachine.now,
            visitorID=visitorId,
            visitID=latestVisit.visitID if latestVisit else None,
            programID=program.programID,
            ambassadorRef=ambassadorRef or None,
            ambassadorID=ambassador.userID if ambassador else None,
            buyerUserID=buyerUserId,
            productUrl=productUrl,
            resolvedUrl=resolution.url,
            subIdSent=resolution.subIdSent
        )
        self.session.add(click)
        self.session.commit()

        logger.info(
            f"Click {click.clickID}: visitor {visitorId} -> program {program.name} "
            f"(ref={ambassadorRef}, subId={resolution.subIdSent})"
        )

        await eventBus.emit(AffiliateEvents.CLICK_TRACKED, {
            "clickId": click.clickID,
            "visitorId": visitorId,
            "programId": program.programID,
            "ambassadorId": click.ambassadorID
        })

        if not isUsableRedirect(resolution.url):
            logger.warning(f"Program {program.name} produced an unusable redirect url: {resolution.url!r}")
            return None

        return resolution.url

    async def findLatestClick(self, ambassadorId: int, programId: int) -> Optional[ClickEvent]:
        """Most recent click of an ambassador on a program, used by reconciliation."""
        return self.session.query(ClickEvent).filter_by(
            ambassadorID=ambassadorId,
            programID=programId
        ).order_by(ClickEvent.createdAt.desc(), ClickEvent.clickID.desc()).first()

    async def countRecentClicks(self, ambassadorId: int, hours: int = 1) -> int:
        since = timeMachine.now - timedelta(hours=hours)
        return self.session.query(func.count(ClickEvent.clickID)).filter(
            ClickEvent.ambassadorID == ambassadorId,
            ClickEvent.createdAt >= since
        ).scalar() or 0
