from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from models import CommissionBoost, BoostType
from affiliate_system.config.tiers import Tier, TIER_CONFIG
from affiliate_system.services.commission_service import (
    CommissionService,
    RateOverrides,
    SponsorChain,
    computeShares,
    round2,
    tierFor,
)
from affiliate_system.utils.time_machine import addMonths
from tests.conftest import NOW


def _conversion(amount="100", reportedCommission=None, **fields):
    values = {
        "conversionID": 1,
        "programID": 1,
        "ambassadorID": 1,
        "amount": Decimal(amount),
        "reportedCommission": Decimal(reportedCommission) if reportedCommission else None,
    }
    values.update(fields)
    return SimpleNamespace(**values)


def _program(networkCommissionRate="10", buyerCashbackRate="5"):
    return SimpleNamespace(
        name="amazon-fr",
        networkCommissionRate=Decimal(networkCommissionRate),
        buyerCashbackRate=Decimal(buyerCashbackRate) if buyerCashbackRate is not None else None
    )


def _user(userID, joinedAt=None, trailingSaleCount=0, status="active"):
    return SimpleNamespace(
        userID=userID,
        joinedAt=joinedAt or NOW - timedelta(days=30),
        trailingSaleCount=trailingSaleCount,
        status=status
    )


# =========================================================================
# tierFor
# =========================================================================

@pytest.mark.parametrize("count,tier,rate", [
    (0, Tier.BEGINNER, "0.25"),
    (9, Tier.BEGINNER, "0.25"),
    (10, Tier.ACTIVE, "0.26"),
    (29, Tier.ACTIVE, "0.26"),
    (30, Tier.PERFORMER, "0.27"),
    (74, Tier.PERFORMER, "0.27"),
    (75, Tier.EXPERT, "0.285"),
    (149, Tier.EXPERT, "0.285"),
    (150, Tier.ELITE, "0.30"),
    (10000, Tier.ELITE, "0.30"),
])
def test_tier_thresholds_are_inclusive(count, tier, rate):
    info = tierFor(count)
    assert info.tier == tier
    assert info.rate == Decimal(rate)


def test_tier_rate_is_monotonic():
    rates = [tierFor(count).rate for count in range(0, 200)]
    assert all(low <= high for low, high in zip(rates, rates[1:]))


def test_tier_config_is_ordered_by_threshold():
    thresholds = [settings["minSales"] for settings in TIER_CONFIG.values()]
    assert thresholds == sorted(thresholds)


# =========================================================================
# computeShares
# =========================================================================

def test_full_chain_split():
    level1, level2 = _user(2), _user(3)

    shares = computeShares(_conversion(), _user(1), SponsorChain(level1, level2), _program(), now=NOW)

    assert shares.commissionTotal == Decimal("10.00")
    assert shares.ambassadorShare == Decimal("2.50")
    assert shares.sponsorL1Share == Decimal("0.50")
    assert shares.sponsorL2Share == Decimal("0.20")
    assert shares.platformShare == Decimal("6.80")
    assert shares.buyerShare == Decimal("5.00")
    assert shares.tier == "beginner"
    assert shares.sponsorL1ID == 2
    assert shares.sponsorL2ID == 3
    assert shares.configurationError is None


def test_buyer_share_does_not_reduce_commission_pool():
    shares = computeShares(_conversion(), _user(1), SponsorChain(), _program(buyerCashbackRate="50"), now=NOW)

    assert shares.buyerShare == Decimal("50.00")
    assert shares.ambassadorShare + shares.platformShare == shares.commissionTotal


def test_reported_commission_overrides_program_rate():
    shares = computeShares(_conversion(reportedCommission="7.40"), _user(1), SponsorChain(), _program(), now=NOW)

    assert shares.commissionTotal == Decimal("7.40")
    assert shares.ambassadorShare == Decimal("1.85")


def test_sale_count_argument_wins_over_cached_count():
    ambassador = _user(1, trailingSaleCount=0)

    shares = computeShares(_conversion(), ambassador, SponsorChain(), _program(), saleCount=150, now=NOW)

    assert shares.tier == "elite"
    assert shares.ambassadorShare == Decimal("3.00")


def test_sponsor_windows_measured_from_ambassador_join():
    joinedAt = NOW - timedelta(days=200)
    shares = computeShares(_conversion(), _user(1, joinedAt=joinedAt),
                           SponsorChain(_user(2), _user(3)), _program(), now=NOW)

    assert shares.sponsorL1Share == Decimal("0.50")
    assert shares.sponsorL2Share == Decimal("0")
    assert shares.sponsorL2ID is None


def test_level_one_window_is_exclusive_at_twelve_months():
    joinedAt = NOW - timedelta(days=400)
    now = addMonths(joinedAt, 12)

    shares = computeShares(_conversion(), _user(1, joinedAt=joinedAt),
                           SponsorChain(_user(2), None), _program(), now=now)
    assert shares.sponsorL1Share == Decimal("0")

    shares = computeShares(_conversion(), _user(1, joinedAt=joinedAt),
                           SponsorChain(_user(2), None), _program(), now=now - timedelta(seconds=1))
    assert shares.sponsorL1Share == Decimal("0.50")


def test_blocked_sponsor_still_earns_inside_window():
    ambassador = _user(1, joinedAt=NOW - timedelta(days=10))
    shares = computeShares(_conversion(), ambassador,
                           SponsorChain(_user(2, status="blocked"), _user(3, status="deleted")),
                           _program(), now=NOW)

    assert shares.sponsorL1Share == Decimal("0.50")
    assert shares.sponsorL2Share == Decimal("0.20")
    assert shares.platformShare == Decimal("6.80")


def test_no_ambassador_leaves_everything_to_platform():
    shares = computeShares(_conversion(ambassadorID=None), None, SponsorChain(), _program(), now=NOW)

    assert shares.ambassadorShare == Decimal("0")
    assert shares.sponsorL1Share == Decimal("0")
    assert shares.sponsorL2Share == Decimal("0")
    assert shares.platformShare == Decimal("10.00")
    assert shares.buyerShare == Decimal("5.00")
    assert shares.tier is None


def test_missing_buyer_rate_uses_default():
    shares = computeShares(_conversion(), _user(1), SponsorChain(), _program(buyerCashbackRate=None), now=NOW)
    assert shares.buyerShare == Decimal("10.00")


def test_negative_residual_is_clamped_and_reported():
    overrides = RateOverrides(ambassadorRate=Decimal("99"))

    shares = computeShares(_conversion(), _user(1), SponsorChain(_user(2), _user(3)), _program(),
                           overrides=overrides, now=NOW)

    assert shares.platformShare == Decimal("0")
    assert shares.configurationError is not None
    assert shares.asColumns()["needsReview"] is True


@pytest.mark.parametrize("amount", ["0.01", "0.99", "13.37", "100", "249.95", "1234.56"])
@pytest.mark.parametrize("count", [0, 10, 30, 75, 150])
def test_shares_are_conserved(amount, count):
    shares = computeShares(_conversion(amount=amount), _user(1, trailingSaleCount=count),
                           SponsorChain(_user(2), _user(3)), _program(networkCommissionRate="7.5"), now=NOW)

    total = shares.ambassadorShare + shares.sponsorL1Share + shares.sponsorL2Share + shares.platformShare
    assert total == shares.commissionTotal
    assert shares.platformShare >= 0
    assert all(share == round2(share) for share in (
        shares.ambassadorShare, shares.sponsorL1Share, shares.sponsorL2Share,
        shares.platformShare, shares.buyerShare
    ))


# =========================================================================
# CommissionService
# =========================================================================

@pytest.mark.asyncio
async def test_sponsor_chain_stops_after_two_hops(session, make_user):
    top = make_user(ref="TOP")
    level2 = make_user(ref="L2", sponsor=top)
    level1 = make_user(ref="L1", sponsor=level2)
    ambassador = make_user(ref="AMB", sponsor=level1)

    chain = await CommissionService(session).resolveSponsorChain(ambassador)

    assert chain.level1.userID == level1.userID
    assert chain.level2.userID == level2.userID


@pytest.mark.asyncio
async def test_sponsor_loop_is_cut(session, make_user):
    first = make_user(ref="AAA")
    second = make_user(ref="BBB", sponsor=first)
    first.sponsorID = second.userID
    session.commit()

    chain = await CommissionService(session).resolveSponsorChain(first)

    assert chain.level1.userID == second.userID
    assert chain.level2 is None


@pytest.mark.asyncio
async def test_self_sponsor_has_no_chain(session, make_user):
    user = make_user(ref="SELF")
    user.sponsorID = user.userID
    session.commit()

    chain = await CommissionService(session).resolveSponsorChain(user)

    assert chain.level1 is None
    assert chain.level2 is None


@pytest.mark.asyncio
async def test_boosts_user_specific_first(session, make_user):
    ambassador = make_user(ref="AMB")
    other = make_user(ref="OTHER")
    session.add_all([
        CommissionBoost(userID=None, type=BoostType.AMBASSADOR_RATE, boostValue=Decimal("27"),
                        startDate=NOW - timedelta(days=1)),
        CommissionBoost(userID=ambassador.userID, type=BoostType.AMBASSADOR_RATE, boostValue=Decimal("30"),
                        startDate=NOW - timedelta(days=1), endDate=NOW + timedelta(days=1)),
        CommissionBoost(userID=other.userID, type=BoostType.SPONSOR_RATE, boostValue=Decimal("9"),
                        startDate=NOW - timedelta(days=1)),
        CommissionBoost(userID=None, type=BoostType.BUYER_CASHBACK, boostValue=Decimal("8"),
                        startDate=NOW - timedelta(days=1), maxUses=1, currentUses=1),
    ])
    session.commit()

    overrides = await CommissionService(session).resolveOverrides(ambassador)

    assert overrides.ambassadorRate == Decimal("30")
    assert overrides.sponsorRate is None
    assert overrides.buyerRate is None
    assert len(overrides.boostIds) == 1


@pytest.mark.asyncio
async def test_expired_and_future_boosts_are_ignored(session, make_user):
    ambassador = make_user(ref="AMB")
    session.add_all([
        CommissionBoost(userID=ambassador.userID, type=BoostType.AMBASSADOR_RATE, boostValue=Decimal("30"),
                        startDate=NOW - timedelta(days=10), endDate=NOW - timedelta(days=1)),
        CommissionBoost(userID=ambassador.userID, type=BoostType.AMBASSADOR_RATE, boostValue=Decimal("31"),
                        startDate=NOW + timedelta(days=1)),
    ])
    session.commit()

    overrides = await CommissionService(session).resolveOverrides(ambassador)

    assert overrides.ambassadorRate is None
    assert overrides.boostIds == []


@pytest.mark.asyncio
async def test_calculate_applies_boosts(session, make_user, make_program):
    ambassador = make_user(ref="AMB")
    program = make_program()
    session.add(CommissionBoost(userID=None, type=BoostType.BUYER_CASHBACK, boostValue=Decimal("8"),
                                startDate=NOW - timedelta(days=1)))
    session.commit()

    conversion = _conversion(programID=program.programID, ambassadorID=ambassador.userID)
    shares, overrides = await CommissionService(session).calculate(conversion, saleCount=0)

    assert shares.buyerShare == Decimal("8.00")
    assert shares.buyerRate == Decimal("8")
    assert len(overrides.boostIds) == 1
