# models/__init__.py
"""
Database models for the affiliate attribution & commission engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.user import User
from models.affiliate_program import AffiliateProgram
from models.attribution import Visitor, AttributionRecord, Visit
from models.click_event import ClickEvent
from models.conversion import Conversion, ConversionStatus
from models.cashback_entry import CashbackLedgerEntry, LedgerEntryType
from models.audit_log import AuditLog
from models.fraud_flag import FraudFlag

# Commission models
from models.commission.tier_history import TierHistory
from models.commission.commission_boost import CommissionBoost, BoostType

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'User',
    'AffiliateProgram',
    'Visitor',
    'AttributionRecord',
    'Visit',
    'ClickEvent',
    'Conversion',
    'ConversionStatus',
    'CashbackLedgerEntry',
    'LedgerEntryType',
    'AuditLog',
    'FraudFlag',

    # Commission
    'TierHistory',
    'CommissionBoost',
    'BoostType',
]
