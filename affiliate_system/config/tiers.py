# affiliate_system/config/tiers.py
"""
Commission tiers configuration and constants.
"""
from enum import Enum
from decimal import Decimal


class Tier(Enum):
    BEGINNER = "beginner"
    ACTIVE = "active"
    PERFORMER = "performer"
    EXPERT = "expert"
    ELITE = "elite"


# Ordered from lowest to highest threshold
TIER_CONFIG = {
    Tier.BEGINNER: {
        "rate": Decimal("0.25"),  # 25%
        "minSales": 0,
        "displayName": "Débutant"
    },
    Tier.ACTIVE: {
        "rate": Decimal("0.26"),  # 26%
        "minSales": 10,
        "displayName": "Actif"
    },
    Tier.PERFORMER: {
        "rate": Decimal("0.27"),  # 27%
        "minSales": 30,
        "displayName": "Performant"
    },
    Tier.EXPERT: {
        "rate": Decimal("0.285"),  # 28.5%
        "minSales": 75,
        "displayName": "Expert"
    },
    Tier.ELITE: {
        "rate": Decimal("0.30"),  # 30%
        "minSales": 150,
        "displayName": "Élite"
    }
}

# Sponsor bonuses, share of commission_total
SPONSOR_L1_RATE = Decimal("0.05")  # 5%
SPONSOR_L2_RATE = Decimal("0.02")  # 2%

# Eligibility windows, measured from the referred ambassador's joinedAt
SPONSOR_L1_WINDOW_MONTHS = 12
SPONSOR_L2_WINDOW_MONTHS = 6

# Sponsor chain is never followed further than this
MAX_SPONSOR_DEPTH = 2

# Conversion statuses counted as validated sales
VALIDATED_STATUSES = ("confirmed", "paid")
