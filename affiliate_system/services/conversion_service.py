# affiliate_system/services/conversion_service.py
"""
Conversion state machine.

    pending -> confirmed -> paid
    pending -> cancelled
    confirmed -> cancelled

paid and cancelled are terminal. Every transition is a compare-and-swap on
status inside one transaction: it either fully applies (status, shares,
ledger, audit) or leaves the record untouched.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging

from models import User, AffiliateProgram, Conversion, ConversionStatus, AuditLog
from affiliate_system.errors import ConversionNotFoundError, IllegalTransitionError, ProgramNotFoundError
from affiliate_system.services.commission_service import CommissionService, ShareBreakdown
from affiliate_system.services.tier_service import TierService
from affiliate_system.services.cashback_ledger import CashbackLedger
from affiliate_system.services.click_service import ClickService
from affiliate_system.services.fraud_service import FraudService
from affiliate_system.utils.time_machine import timeMachine
from affiliate_system.events.event_bus import eventBus, AffiliateEvents

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class ConversionService:
    """Owns Conversion records once created."""

    def __init__(self, session: Session):
        self.session = session
        self.commissions = CommissionService(session)
        self.tiers = TierService(session)
        self.ledger = CashbackLedger(session)
        self.clicks = ClickService(session)
        self.fraud = FraudService(session, self.clicks)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def getConversion(self, conversionId: int) -> Conversion:
        conversion = self.session.query(Conversion).filter_by(conversionID=conversionId).first()
        if not conversion:
            raise ConversionNotFoundError(conversionId)
        return conversion

    async def findByOrder(self, programId: int, orderRef: str) -> Optional[Conversion]:
        return self.session.query(Conversion).filter_by(programID=programId, orderRef=orderRef).first()

    async def listPayable(self) -> List[Conversion]:
        """Confirmed conversions waiting for the payout subsystem."""
        return self.session.query(Conversion).filter_by(
            status=ConversionStatus.CONFIRMED
        ).order_by(Conversion.confirmedAt).all()

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def create(
            self,
            programId: int,
            orderRef: str,
            amount: Decimal,
            ambassadorRef: Optional[str],
            commission: Optional[Decimal] = None,
            buyerUserId: Optional[int] = None,
            clickId: Optional[int] = None,
            attributionMethod: str = "postback",
            actorId: str = SYSTEM_ACTOR
    ) -> Conversion:
        """
        Record a reported sale in 'pending'. The same (program, order) pair
        always maps to one conversion: repeated reports return the existing one.
        Unknown or inactive ambassador refs still create a conversion, with no
        ambassador and zero ambassador/sponsor shares.
        """
        program = self.session.query(AffiliateProgram).filter_by(programID=programId).first()
        if not program:
            raise ProgramNotFoundError(programId)

        existing = await self.findByOrder(programId, orderRef)
        if existing:
            logger.info(f"Duplicate order {orderRef} for program {program.name}, conversion {existing.conversionID}")
            return existing

        ambassador = User.findActiveAmbassador(self.session, ambassadorRef)
        if ambassadorRef and not ambassador:
            logger.warning(f"Order {orderRef}: ambassador ref {ambassadorRef} unknown or inactive")

        if ambassador and clickId is None:
            latestClick = await self.clicks.findLatestClick(ambassador.userID, programId)
            if latestClick:
                clickId = latestClick.clickID
                if buyerUserId is None:
                    buyerUserId = latestClick.buyerUserID

        now = timeMachine.now
        conversion = Conversion(
            createdAt=now,
            programID=programId,
            ambassadorID=ambassador.userID if ambassador else None,
            ambassadorRef=ambassadorRef or None,
            buyerUserID=buyerUserId,
            clickID=clickId,
            orderRef=orderRef,
            amount=Decimal(str(amount)),
            reportedCommission=Decimal(str(commission)) if commission is not None else None,
            status=ConversionStatus.PENDING,
            attributionMethod=attributionMethod
        )

        try:
            self.session.add(conversion)
            self.session.flush()

            shares, _ = await self.commissions.calculate(conversion)
            for column, value in shares.asColumns().items():
                setattr(conversion, column, value)

            self._audit(actorId, "conversion.created", conversion.conversionID, None, {
                "status": ConversionStatus.PENDING,
                "orderRef": orderRef,
                "amount": str(conversion.amount),
                "ambassadorId": conversion.ambassadorID
            })
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            existing = await self.findByOrder(programId, orderRef)
            if existing:
                logger.info(f"Order {orderRef} for program {programId} created concurrently")
                return existing
            raise
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"Conversion {conversion.conversionID} created: order {orderRef}, "
            f"amount {conversion.amount}, ambassador {conversion.ambassadorID}"
        )

        await eventBus.emit(AffiliateEvents.CONVERSION_CREATED, {
            "conversionId": conversion.conversionID,
            "programId": programId,
            "ambassadorId": conversion.ambassadorID
        })
        await self._reportConfigurationError(conversion, shares)

        try:
            await self.fraud.checkConversion(conversion)
        except Exception as e:
            self.session.rollback()
            logger.error(f"Fraud check failed for conversion {conversion.conversionID}: {e}")

        return conversion

    async def confirm(self, conversionId: int, actorId: str = SYSTEM_ACTOR) -> Conversion:
        """
        pending -> confirmed. Computes and freezes all shares and credits the
        buyer's cashback. Confirming an already confirmed conversion is a no-op.
        """
        conversion = await self.getConversion(conversionId)

        if conversion.status == ConversionStatus.CONFIRMED:
            logger.info(f"Conversion {conversionId} already confirmed, nothing to do")
            return conversion
        if conversion.status != ConversionStatus.PENDING:
            raise IllegalTransitionError(conversionId, conversion.status, ConversionStatus.CONFIRMED)

        now = timeMachine.now
        try:
            saleCount = None
            if conversion.ambassadorID:
                saleCount = await self.tiers.trailingSaleCount(conversion.ambassadorID)

            shares, overrides = await self.commissions.calculate(conversion, saleCount=saleCount)

            values = shares.asColumns()
            values.update({"status": ConversionStatus.CONFIRMED, "confirmedAt": now, "updatedAt": now})
            if not self._swapStatus(conversionId, ConversionStatus.PENDING, values):
                self.session.rollback()
                return await self._resolveLostSwap(conversionId, ConversionStatus.CONFIRMED)

            credited = None
            if conversion.buyerUserID and shares.buyerShare > 0:
                credited = await self.ledger.credit(conversion.buyerUserID, shares.buyerShare, conversionId)

            await self.commissions.consumeBoosts(overrides.boostIds)

            self._audit(actorId, "conversion.confirmed", conversionId,
                        {"status": ConversionStatus.PENDING},
                        {"status": ConversionStatus.CONFIRMED, **self._shareValues(shares)})
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(conversion)
        logger.info(
            f"Conversion {conversionId} confirmed: total {conversion.commissionTotal}, "
            f"ambassador {conversion.ambassadorShare}, buyer {conversion.buyerShare}"
        )

        await eventBus.emit(AffiliateEvents.CONVERSION_CONFIRMED, {
            "conversionId": conversionId,
            "ambassadorId": conversion.ambassadorID,
            "ambassadorShare": str(conversion.ambassadorShare),
            "buyerShare": str(conversion.buyerShare)
        })
        await self.ledger.announce(credited)
        await self._reportConfigurationError(conversion, shares)
        return conversion

    async def markPaid(self, conversionId: int, actorId: str = SYSTEM_ACTOR) -> Conversion:
        """confirmed -> paid. Called by the payout subsystem once funds moved."""
        conversion = await self.getConversion(conversionId)
        if conversion.status != ConversionStatus.CONFIRMED:
            raise IllegalTransitionError(conversionId, conversion.status, ConversionStatus.PAID)

        now = timeMachine.now
        try:
            values = {"status": ConversionStatus.PAID, "paidAt": now, "updatedAt": now}
            if not self._swapStatus(conversionId, ConversionStatus.CONFIRMED, values):
                self.session.rollback()
                current = await self.getConversion(conversionId)
                raise IllegalTransitionError(conversionId, current.status, ConversionStatus.PAID)

            self._audit(actorId, "conversion.paid", conversionId,
                        {"status": ConversionStatus.CONFIRMED},
                        {"status": ConversionStatus.PAID})
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(conversion)
        logger.info(f"Conversion {conversionId} marked paid")

        await eventBus.emit(AffiliateEvents.CONVERSION_PAID, {
            "conversionId": conversionId,
            "ambassadorId": conversion.ambassadorID
        })
        return conversion

    async def cancel(self, conversionId: int, reason: str, actorId: str = SYSTEM_ACTOR) -> Conversion:
        """
        pending|confirmed -> cancelled. Shares stay on the record for audit.
        Cashback credited at confirmation is reversed with a clawback entry.
        """
        conversion = await self.getConversion(conversionId)
        previousStatus = conversion.status
        if conversion.isTerminal:
            raise IllegalTransitionError(conversionId, previousStatus, ConversionStatus.CANCELLED)

        now = timeMachine.now
        try:
            values = {
                "status": ConversionStatus.CANCELLED,
                "cancelledAt": now,
                "cancelReason": reason,
                "updatedAt": now
            }
            if not self._swapStatus(conversionId, previousStatus, values):
                # A concurrent confirm may have landed; confirmed is still cancellable
                currentStatus = self._readStatus(conversionId)
                if currentStatus in ConversionStatus.TERMINAL or \
                        not self._swapStatus(conversionId, currentStatus, values):
                    self.session.rollback()
                    return await self._resolveLostSwap(conversionId, ConversionStatus.CANCELLED)
                previousStatus = currentStatus

            clawedBack = None
            if previousStatus == ConversionStatus.CONFIRMED:
                clawedBack = await self.ledger.clawback(conversionId, reason)

            self._audit(actorId, "conversion.cancelled", conversionId,
                        {"status": previousStatus},
                        {"status": ConversionStatus.CANCELLED, "reason": reason})
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(conversion)
        logger.info(f"Conversion {conversionId} cancelled from {previousStatus}: {reason}")

        await eventBus.emit(AffiliateEvents.CONVERSION_CANCELLED, {
            "conversionId": conversionId,
            "previousStatus": previousStatus,
            "reason": reason
        })
        await self.ledger.announce(clawedBack)
        return conversion

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _swapStatus(self, conversionId: int, expectedStatus: str, values: Dict) -> bool:
        """UPDATE ... WHERE status = expected. False if another caller got there first."""
        updated = self.session.query(Conversion).filter(
            Conversion.conversionID == conversionId,
            Conversion.status == expectedStatus
        ).update(values, synchronize_session=False)
        return updated == 1

    def _readStatus(self, conversionId: int) -> Optional[str]:
        return self.session.query(Conversion.status).filter(
            Conversion.conversionID == conversionId
        ).scalar()

    async def _resolveLostSwap(self, conversionId: int, requested: str) -> Conversion:
        current = await self.getConversion(conversionId)
        self.session.refresh(current)
        if current.status == requested:
            logger.info(f"Conversion {conversionId} reached {requested} concurrently")
            return current
        raise IllegalTransitionError(conversionId, current.status, requested)

    def _audit(self, actorId: str, action: str, conversionId: int,
               oldValues: Optional[Dict], newValues: Optional[Dict]):
        self.session.add(AuditLog(
            createdAt=timeMachine.now,
            actorID=actorId,
            action=action,
            entityType="conversion",
            entityID=str(conversionId),
            oldValues=oldValues,
            newValues=newValues
        ))

    @staticmethod
    def _shareValues(shares: ShareBreakdown) -> Dict[str, str]:
        return {
            "commissionTotal": str(shares.commissionTotal),
            "ambassadorShare": str(shares.ambassadorShare),
            "sponsorL1Share": str(shares.sponsorL1Share),
            "sponsorL2Share": str(shares.sponsorL2Share),
            "buyerShare": str(shares.buyerShare),
            "platformShare": str(shares.platformShare),
        }

    async def _reportConfigurationError(self, conversion: Conversion, shares: ShareBreakdown):
        if not shares.configurationError:
            return
        await eventBus.emit(AffiliateEvents.COMMISSION_CONFIGURATION_ERROR, {
            "conversionId": conversion.conversionID,
            "programId": conversion.programID,
            "error": shares.configurationError
        })
