# affiliate_system/__init__.py
"""
Affiliate System - attribution, redirect tracking, conversions and commissions.
"""

# Services
from affiliate_system.services.attribution_service import AttributionService
from affiliate_system.services.click_service import ClickService
from affiliate_system.services.commission_service import CommissionService, computeShares, tierFor
from affiliate_system.services.conversion_service import ConversionService
from affiliate_system.services.tier_service import TierService
from affiliate_system.services.cashback_ledger import CashbackLedger
from affiliate_system.services.fraud_service import FraudService

# Configuration
from affiliate_system.config.tiers import Tier, TIER_CONFIG

# Utilities
from affiliate_system.utils.time_machine import timeMachine
from affiliate_system.utils.url_templates import resolveRedirectUrl, cleanProductUrl

# Events
from affiliate_system.events.event_bus import eventBus, AffiliateEvents

__all__ = [
    # Services
    'AttributionService',
    'ClickService',
    'CommissionService',
    'ConversionService',
    'TierService',
    'CashbackLedger',
    'FraudService',
    'computeShares',
    'tierFor',

    # Config
    'Tier',
    'TIER_CONFIG',

    # Utils
    'timeMachine',
    'resolveRedirectUrl',
    'cleanProductUrl',

    # Events
    'eventBus',
    'AffiliateEvents',
]
