# models/commission/__init__.py
"""
Commission-specific models: tier history and rate boosts.
"""

from models.commission.tier_history import TierHistory
from models.commission.commission_boost import CommissionBoost

__all__ = [
    'TierHistory',
    'CommissionBoost',
]
