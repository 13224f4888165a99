# affiliate_system/services/commission_service.py
"""
Commission calculation service - tier lookup and the two-level share split.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import or_
import logging

from models import User, AffiliateProgram, Conversion, CommissionBoost, BoostType
from affiliate_system.config.tiers import (
    Tier, TIER_CONFIG,
    SPONSOR_L1_RATE, SPONSOR_L2_RATE,
    SPONSOR_L1_WINDOW_MONTHS, SPONSOR_L2_WINDOW_MONTHS,
    MAX_SPONSOR_DEPTH,
)
from affiliate_system.utils.time_machine import timeMachine, ensureUtc, addMonths
import config

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def round2(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent(value) -> Decimal:
    """Percent column value -> fraction."""
    return Decimal(str(value or 0)) / HUNDRED


@dataclass(frozen=True)
class TierInfo:
    tier: Tier
    rate: Decimal


@dataclass
class SponsorChain:
    """Sponsors resolved once per computation, never more than two hops."""
    level1: Optional[User] = None
    level2: Optional[User] = None


@dataclass
class RateOverrides:
    """Rates from active commission boosts, in percent."""
    ambassadorRate: Optional[Decimal] = None
    sponsorRate: Optional[Decimal] = None
    buyerRate: Optional[Decimal] = None
    boostIds: List[int] = field(default_factory=list)


@dataclass
class ShareBreakdown:
    commissionTotal: Decimal
    ambassadorShare: Decimal = ZERO
    sponsorL1Share: Decimal = ZERO
    sponsorL2Share: Decimal = ZERO
    buyerShare: Decimal = ZERO
    platformShare: Decimal = ZERO

    tier: Optional[str] = None
    ambassadorRate: Optional[Decimal] = None
    sponsorL1Rate: Optional[Decimal] = None
    sponsorL2Rate: Optional[Decimal] = None
    buyerRate: Optional[Decimal] = None
    sponsorL1ID: Optional[int] = None
    sponsorL2ID: Optional[int] = None

    configurationError: Optional[str] = None

    def asColumns(self) -> Dict:
        """Conversion column values for this breakdown."""
        return {
            "commissionTotal": self.commissionTotal,
            "ambassadorShare": self.ambassadorShare,
            "sponsorL1Share": self.sponsorL1Share,
            "sponsorL2Share": self.sponsorL2Share,
            "buyerShare": self.buyerShare,
            "platformShare": self.platformShare,
            "appliedTier": self.tier,
            "appliedAmbassadorRate": self.ambassadorRate,
            "appliedSponsorL1Rate": self.sponsorL1Rate,
            "appliedSponsorL2Rate": self.sponsorL2Rate,
            "appliedBuyerRate": self.buyerRate,
            "sponsorL1ID": self.sponsorL1ID,
            "sponsorL2ID": self.sponsorL2ID,
            "needsReview": self.configurationError is not None,
            "reviewNote": self.configurationError,
        }


def tierFor(validatedSaleCount: int) -> TierInfo:
    """Highest tier whose threshold is <= count. Thresholds are inclusive."""
    selected = Tier.BEGINNER
    for tier, settings in TIER_CONFIG.items():
        if validatedSaleCount >= settings["minSales"]:
            selected = tier
    return TierInfo(tier=selected, rate=TIER_CONFIG[selected]["rate"])


def commissionTotalFor(conversion: Conversion, program: AffiliateProgram) -> Decimal:
    """Network-reported commission when present, otherwise amount x program rate."""
    if conversion.reportedCommission is not None:
        return round2(Decimal(str(conversion.reportedCommission)))
    return round2(Decimal(str(conversion.amount)) * percent(program.networkCommissionRate))


def computeShares(
        conversion: Conversion,
        ambassador: Optional[User],
        sponsorChain: SponsorChain,
        program: AffiliateProgram,
        overrides: Optional[RateOverrides] = None,
        saleCount: Optional[int] = None,
        now: Optional[datetime] = None
) -> ShareBreakdown:
    """
    Split a conversion's commission.

    ambassador + sponsorL1 + sponsorL2 + platform == commissionTotal.
    Buyer cashback is computed on the purchase amount and funded outside
    commissionTotal. A negative platform residual is clamped to zero and
    reported through configurationError.
    """
    overrides = overrides or RateOverrides()
    now = now or timeMachine.now
    amount = Decimal(str(conversion.amount))

    shares = ShareBreakdown(commissionTotal=commissionTotalFor(conversion, program))

    # Buyer cashback
    if overrides.buyerRate is not None:
        buyerRate = Decimal(str(overrides.buyerRate))
    elif program.buyerCashbackRate is not None:
        buyerRate = Decimal(str(program.buyerCashbackRate))
    else:
        buyerRate = config.DEFAULT_BUYER_CASHBACK_RATE
    shares.buyerRate = buyerRate
    shares.buyerShare = round2(amount * buyerRate / HUNDRED)

    if ambassador is not None:
        # Ambassador tier rate
        count = ambassador.trailingSaleCount if saleCount is None else saleCount
        tierInfo = tierFor(count or 0)
        shares.tier = tierInfo.tier.value
        if overrides.ambassadorRate is not None:
            shares.ambassadorRate = Decimal(str(overrides.ambassadorRate))
        else:
            shares.ambassadorRate = tierInfo.rate * HUNDRED
        shares.ambassadorShare = round2(shares.commissionTotal * shares.ambassadorRate / HUNDRED)

        # Sponsor bonuses, windows measured from the ambassador's joinedAt
        joinedAt = ensureUtc(ambassador.joinedAt) or now
        l1 = sponsorChain.level1
        if l1 is not None and now < addMonths(joinedAt, SPONSOR_L1_WINDOW_MONTHS):
            if overrides.sponsorRate is not None:
                shares.sponsorL1Rate = Decimal(str(overrides.sponsorRate))
            else:
                shares.sponsorL1Rate = SPONSOR_L1_RATE * HUNDRED
            shares.sponsorL1Share = round2(shares.commissionTotal * shares.sponsorL1Rate / HUNDRED)
            shares.sponsorL1ID = l1.userID

        l2 = sponsorChain.level2
        if l2 is not None and now < addMonths(joinedAt, SPONSOR_L2_WINDOW_MONTHS):
            shares.sponsorL2Rate = SPONSOR_L2_RATE * HUNDRED
            shares.sponsorL2Share = round2(shares.commissionTotal * shares.sponsorL2Rate / HUNDRED)
            shares.sponsorL2ID = l2.userID

    residual = (shares.commissionTotal - shares.ambassadorShare
                - shares.sponsorL1Share - shares.sponsorL2Share)
    if residual < 0:
        shares.configurationError = (
            f"Commission split exceeds 100%: residual {residual} on total {shares.commissionTotal}"
        )
        residual = ZERO
    shares.platformShare = round2(residual)

    return shares


class CommissionService:
    """Service resolving everything computeShares needs for one conversion."""

    def __init__(self, session: Session):
        self.session = session

    async def resolveSponsorChain(self, ambassador: Optional[User]) -> SponsorChain:
        """
        Follow sponsorID at most MAX_SPONSOR_DEPTH hops. Loops (self-sponsoring,
        A<->B) cut the chain where the repeat would occur.
        """
        sponsors = []
        if ambassador is not None:
            seen = {ambassador.userID}
            current = ambassador
            while current.sponsorID and len(sponsors) < MAX_SPONSOR_DEPTH:
                sponsor = self.session.query(User).filter_by(userID=current.sponsorID).first()
                if sponsor is None or sponsor.userID in seen:
                    break
                sponsors.append(sponsor)
                seen.add(sponsor.userID)
                current = sponsor

        sponsors += [None] * (MAX_SPONSOR_DEPTH - len(sponsors))
        return SponsorChain(*sponsors)

    async def resolveOverrides(self, ambassador: Optional[User], now: datetime = None) -> RateOverrides:
        """Active boosts, user-specific before global, first match per type."""
        now = now or timeMachine.now
        overrides = RateOverrides()

        query = self.session.query(CommissionBoost).filter(
            CommissionBoost.isActive == True,
            CommissionBoost.startDate <= now,
            or_(CommissionBoost.endDate == None, CommissionBoost.endDate >= now)
        )
        if ambassador is not None:
            query = query.filter(or_(
                CommissionBoost.userID == ambassador.userID,
                CommissionBoost.userID == None
            ))
        else:
            query = query.filter(CommissionBoost.userID == None)

        boosts = sorted(query.all(), key=lambda b: (b.userID is None, b.boostID))

        for boost in boosts:
            if boost.maxUses is not None and (boost.currentUses or 0) >= boost.maxUses:
                continue

            if boost.type == BoostType.AMBASSADOR_RATE and overrides.ambassadorRate is None:
                if ambassador is None:
                    continue
                overrides.ambassadorRate = Decimal(str(boost.boostValue))
            elif boost.type == BoostType.SPONSOR_RATE and overrides.sponsorRate is None:
                if ambassador is None:
                    continue
                overrides.sponsorRate = Decimal(str(boost.boostValue))
            elif boost.type == BoostType.BUYER_CASHBACK and overrides.buyerRate is None:
                overrides.buyerRate = Decimal(str(boost.boostValue))
            else:
                continue

            overrides.boostIds.append(boost.boostID)

        return overrides

    async def calculate(
            self,
            conversion: Conversion,
            saleCount: Optional[int] = None
    ) -> tuple:
        """
        Compute the share breakdown for a conversion.
        Returns (ShareBreakdown, RateOverrides).
        """
        program = self.session.query(AffiliateProgram).filter_by(
            programID=conversion.programID
        ).first()

        ambassador = None
        if conversion.ambassadorID:
            ambassador = self.session.query(User).filter_by(userID=conversion.ambassadorID).first()

        chain = await self.resolveSponsorChain(ambassador)
        overrides = await self.resolveOverrides(ambassador)

        shares = computeShares(
            conversion,
            ambassador,
            chain,
            program,
            overrides=overrides,
            saleCount=saleCount
        )

        if shares.configurationError:
            logger.error(
                f"Configuration error on conversion {conversion.conversionID} "
                f"(program {program.name}): {shares.configurationError}"
            )

        return shares, overrides

    async def consumeBoosts(self, boostIds: List[int]):
        """Count one use on each boost applied to a confirmed conversion."""
        if not boostIds:
            return
        for boost in self.session.query(CommissionBoost).filter(CommissionBoost.boostID.in_(boostIds)).all():
            boost.currentUses = (boost.currentUses or 0) + 1
