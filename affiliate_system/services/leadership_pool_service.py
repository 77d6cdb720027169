# affiliate_system/services/leadership_pool_service.py
"""
Leadership Pool management service.
"""
from datetime import date
from decimal import Decimal
from typing import List, Dict, Optional
from sqlalchemy.orm import Session
import logging

from models import User, LeadershipPoolDistribution, LeadershipPoolShare, SettlementMeta
from affiliate_system.config.ranks import LEADERSHIP_TIERS
from affiliate_system.config.settings import EngineSettings
from affiliate_system.errors import SettlementFinalizedError
from affiliate_system.events.event_bus import eventBus, AffiliateEvents
from affiliate_system.services.volume_service import VolumeService
from affiliate_system.utils.money import money, moneyDown, toDecimal, ZERO
from affiliate_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class LeadershipPoolService:
    """Weekly pool of platform volume split across tiered leaders."""

    def __init__(self, session: Session, settings: Optional[EngineSettings] = None):
        self.session = session
        self.settings = settings or EngineSettings()
        self.volumeService = VolumeService(session, self.settings)

    def _findLeaders(self) -> Dict[int, List[User]]:
        """Leaders by tier; each user sits in exactly one tier."""
        tiers = {tier: [] for tier in sorted(self.settings.leadershipTierRates)}
        users = self.session.query(User).filter(
            User.rank.in_(list(LEADERSHIP_TIERS)),
            User.status == "active"
        ).order_by(User.userID).all()

        for user in users:
            tier = LEADERSHIP_TIERS[user.rank]
            if tier in tiers:
                tiers[tier].append(user)
        return tiers

    async def distributeWeek(self, weekStart: date) -> Dict:
        """
        Calculate the pool for a week. Upsert keyed by weekStart: running it
        again replaces the lines until the week is finalized.
        """
        if self.session.query(SettlementMeta).filter_by(weekStart=weekStart).first():
            raise SettlementFinalizedError(f"Week {weekStart} is already finalized")

        totalVolume = self.volumeService.weeklySalesVolume(weekStart)
        poolPercent = self.settings.leadershipPoolPercent
        totalPool = money(totalVolume * poolPercent / Decimal("100"))

        distribution = self.session.query(LeadershipPoolDistribution).filter_by(weekStart=weekStart).first()
        if distribution is None:
            distribution = LeadershipPoolDistribution(weekStart=weekStart)
            self.session.add(distribution)
        else:
            distribution.lines.clear()
            self.session.flush()
            logger.info(f"Recalculating leadership pool for {weekStart}")

        leaders = self._findLeaders()
        tierSummary = {}
        undistributed = ZERO
        lines = []

        for tier, users in leaders.items():
            rate = self.settings.leadershipTierRates[tier]
            tierPool = money(totalPool * rate / poolPercent) if poolPercent > 0 else ZERO

            if not users:
                if tierPool > 0:
                    logger.warning(
                        f"Leadership tier {tier} has no qualified leaders for {weekStart}; "
                        f"{tierPool} is not distributed"
                    )
                undistributed += tierPool
                tierSummary[str(tier)] = {
                    "rate": str(rate), "pool": str(tierPool), "count": 0, "share": "0.00", "undistributed": True,
                }
                continue

            share = moneyDown(tierPool / len(users))
            undistributed += tierPool - share * len(users)

            for user in users:
                line = LeadershipPoolShare(
                    userID=user.userID,
                    weekStart=weekStart,
                    tier=tier,
                    rankName=user.rank,
                    amount=share,
                )
                distribution.lines.append(line)
                lines.append(line)

            tierSummary[str(tier)] = {
                "rate": str(rate), "pool": str(tierPool), "count": len(users), "share": str(share),
                "undistributed": False,
            }

        distribution.weekEnd = timeMachine.weekEndFor(weekStart)
        distribution.totalWeeklyVolume = totalVolume
        distribution.poolPercentage = poolPercent
        distribution.totalPoolAmount = totalPool
        distribution.qualifiedLeaders = tierSummary
        distribution.undistributedAmount = undistributed
        distribution.status = "calculated"

        self.session.commit()

        logger.info(
            f"Leadership pool for {weekStart}: volume={totalVolume}, pool={totalPool}, "
            f"leaders={len(lines)}, undistributed={undistributed}"
        )

        result = {
            "success": True,
            "distributionId": distribution.distributionID,
            "weekStart": weekStart,
            "totalVolume": totalVolume,
            "totalPool": totalPool,
            "tiers": tierSummary,
            "leaders": len(lines),
            "undistributed": undistributed,
        }
        await eventBus.emit(AffiliateEvents.LEADERSHIP_POOL_DISTRIBUTED, {
            "weekStart": weekStart, "totalPool": totalPool, "leaders": len(lines),
        })
        return result

    def getUserShare(self, userId: int, weekStart: date) -> Decimal:
        line = self.session.query(LeadershipPoolShare).filter_by(userID=userId, weekStart=weekStart).first()
        return toDecimal(line.amount) if line else ZERO
