# models/__init__.py
"""
Database models for the SynteraX affiliate engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.user import User
from models.package import Package
from models.purchase import Purchase
from models.notification import Notification

# Compensation models
from models.mlm import (
    BinaryTree,
    ReferralLink,
    GhostBV,
    DirectCommission,
    BinaryCommission,
    OverrideCommission,
    RankDefinition,
    RankHistory,
    LeadershipPoolDistribution,
    LeadershipPoolShare,
    WeeklySettlement,
    SettlementMeta,
    SettlementStatus,
    LedgerEntry,
    CommissionSetting,
    CommissionSettingAudit,
    FailedEvent,
    JobRun,
)

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'User',
    'Package',
    'Purchase',
    'Notification',

    # Compensation
    'BinaryTree',
    'ReferralLink',
    'GhostBV',
    'DirectCommission',
    'BinaryCommission',
    'OverrideCommission',
    'RankDefinition',
    'RankHistory',
    'LeadershipPoolDistribution',
    'LeadershipPoolShare',
    'WeeklySettlement',
    'SettlementMeta',
    'SettlementStatus',
    'LedgerEntry',
    'CommissionSetting',
    'CommissionSettingAudit',
    'FailedEvent',
    'JobRun',
]
