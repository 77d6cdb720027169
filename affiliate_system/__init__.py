# affiliate_system/__init__.py
"""
SynteraX affiliate compensation engine.
"""

# Services
from affiliate_system.services.binary_tree_service import BinaryTreeService
from affiliate_system.services.volume_service import VolumeService
from affiliate_system.services.rank_service import RankService
from affiliate_system.services.ghost_bv_service import GhostBVService
from affiliate_system.services.commission_service import CommissionService
from affiliate_system.services.leadership_pool_service import LeadershipPoolService
from affiliate_system.services.settlement_service import SettlementService
from affiliate_system.services.claim_service import ClaimService
from affiliate_system.services.settings_service import SettingsService
from affiliate_system.services.failure_service import FailureService

# Configuration
from affiliate_system.config.settings import EngineSettings
from affiliate_system.config.ranks import DEFAULT_RANKS, LEADERSHIP_TIERS

# Utilities
from affiliate_system.utils.time_machine import timeMachine

# Events
from affiliate_system.events.event_bus import eventBus, AffiliateEvents

__all__ = [
    # Services
    'BinaryTreeService',
    'VolumeService',
    'RankService',
    'GhostBVService',
    'CommissionService',
    'LeadershipPoolService',
    'SettlementService',
    'ClaimService',
    'SettingsService',
    'FailureService',

    # Config
    'EngineSettings',
    'DEFAULT_RANKS',
    'LEADERSHIP_TIERS',

    # Utils
    'timeMachine',

    # Events
    'eventBus',
    'AffiliateEvents',
]
