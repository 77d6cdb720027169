# models/mlm/__init__.py
"""
Compensation engine tables.
"""

from models.mlm.binary_tree import BinaryTree
from models.mlm.referral_link import ReferralLink
from models.mlm.ghost_bv import GhostBV
from models.mlm.commission import DirectCommission, BinaryCommission, OverrideCommission
from models.mlm.rank_definition import RankDefinition
from models.mlm.rank_history import RankHistory
from models.mlm.leadership_pool import LeadershipPoolDistribution, LeadershipPoolShare
from models.mlm.weekly_settlement import WeeklySettlement, SettlementMeta, SettlementStatus
from models.mlm.ledger_entry import LedgerEntry
from models.mlm.commission_setting import CommissionSetting, CommissionSettingAudit
from models.mlm.failed_event import FailedEvent
from models.mlm.job_run import JobRun

__all__ = [
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
