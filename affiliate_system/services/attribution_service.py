# affiliate_system/services/attribution_service.py
"""
Attribution store - server-side mirror of the amb_ref / visitor_id cookies.
"""
from datetime import timedelta
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
import hashlib
import logging
import re
import secrets

from models import User, Visitor, AttributionRecord, Visit
from affiliate_system.utils.time_machine import timeMachine, ensureUtc
from affiliate_system.events.event_bus import eventBus, AffiliateEvents
import config

logger = logging.getLogger(__name__)

# uuid4 from the cookie middleware, hex from ensureVisitor
VISITOR_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def isValidVisitorId(visitorId: Optional[str]) -> bool:
    return bool(visitorId) and VISITOR_ID_PATTERN.match(visitorId) is not None


def hashIp(ipAddress: Optional[str]) -> str:
    return hashlib.sha256((ipAddress or "unknown").encode("utf-8")).hexdigest()


class AttributionService:
    """Last-click attribution with a fixed retention window."""

    def __init__(self, session: Session,
                 windowDays: int = None,
                 visitorTtlDays: int = None):
        self.session = session
        self.window = timedelta(days=windowDays or config.ATTRIBUTION_WINDOW_DAYS)
        self.visitorTtl = timedelta(days=visitorTtlDays or config.VISITOR_ID_TTL_DAYS)

    async def ensureVisitor(self, visitorId: Optional[str] = None) -> str:
        """
        Mirror the visitor id held in the browser cookie.

        A well-formed id is kept as is: unknown ids are registered, expired
        ones get a fresh TTL. Only a missing or malformed id is replaced by a
        generated one. The visitor clock is independent of attribution.
        """
        now = timeMachine.now

        if not isValidVisitorId(visitorId):
            newId = secrets.token_hex(16)
            self.session.add(Visitor(visitorID=newId, createdAt=now, expiresAt=now + self.visitorTtl))
            self.session.commit()
            logger.info(f"New visitor {newId} (presented id: {visitorId!r})")
            return newId

        visitor = self.session.query(Visitor).filter_by(visitorID=visitorId).first()
        if visitor is None:
            try:
                self.session.add(Visitor(visitorID=visitorId, createdAt=now, expiresAt=now + self.visitorTtl))
                self.session.commit()
                logger.info(f"Registered visitor {visitorId}")
            except IntegrityError:
                self.session.rollback()
                logger.debug(f"Visitor {visitorId} registered concurrently")
        elif ensureUtc(visitor.expiresAt) <= now:
            visitor.expiresAt = now + self.visitorTtl
            self.session.commit()
            logger.info(f"Visitor {visitorId} renewed")

        return visitorId

    async def recordVisit(
            self,
            visitorId: str,
            ambassadorRef: str,
            landingPage: Optional[str] = None,
            sourceUrl: Optional[str] = None,
            ipAddress: Optional[str] = None,
            userAgent: Optional[str] = None
    ) -> Visit:
        """
        Last click wins: overwrite the visitor's attribution with ambassadorRef
        and restart its window. Also appends a Visit row for analytics.
        """
        now = timeMachine.now

        self._upsertAttribution(visitorId, ambassadorRef, now)

        ambassador = User.findActiveAmbassador(self.session, ambassadorRef)
        visit = Visit(
            createdAt=now,
            visitorID=visitorId,
            ambassadorRef=ambassadorRef,
            ambassadorID=ambassador.userID if ambassador else None,
            landingPage=landingPage,
            sourceUrl=sourceUrl,
            ipHash=hashIp(ipAddress),
            userAgent=userAgent
        )
        self.session.add(visit)
        self.session.commit()

        if not ambassador:
            logger.warning(f"Visit for visitor {visitorId} with unknown ref {ambassadorRef}")
        logger.info(f"Attribution for visitor {visitorId} set to {ambassadorRef}")

        await eventBus.emit(AffiliateEvents.VISIT_RECORDED, {
            "visitorId": visitorId,
            "ambassadorRef": ambassadorRef,
            "visitId": visit.visitID
        })
        return visit

    def _upsertAttribution(self, visitorId: str, ambassadorRef: str, setAt):
        """Single-statement upsert where the dialect supports it."""
        insert = UPSERT_DIALECTS.get(self.session.get_bind().dialect.name)

        if insert is None:
            self.session.merge(AttributionRecord(
                visitorID=visitorId,
                ambassadorRef=ambassadorRef,
                setAt=setAt
            ))
            return

        statement = insert(AttributionRecord).values(
            visitorID=visitorId,
            ambassadorRef=ambassadorRef,
            setAt=setAt
        )
        statement = statement.on_conflict_do_update(
            index_elements=[AttributionRecord.visitorID],
            set_={"ambassadorRef": ambassadorRef, "setAt": setAt}
        )
        self.session.execute(statement)

    async def getAttribution(self, visitorId: Optional[str]) -> Optional[str]:
        """Ambassador ref currently attributed to the visitor, None if absent or expired."""
        if not visitorId:
            return None

        record = self.session.query(AttributionRecord).filter_by(visitorID=visitorId).first()
        if not record:
            return None

        if ensureUtc(record.setAt) + self.window <= timeMachine.now:
            logger.debug(f"Attribution for visitor {visitorId} expired (set at {record.setAt})")
            return None

        return record.ambassadorRef

    async def getLatestVisit(self, visitorId: str, ambassadorRef: Optional[str] = None) -> Optional[Visit]:
        query = self.session.query(Visit).filter(Visit.visitorID == visitorId)
        if ambassadorRef:
            query = query.filter(Visit.ambassadorRef == ambassadorRef)
        return query.order_by(Visit.createdAt.desc(), Visit.visitID.desc()).first()
