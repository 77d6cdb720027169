# affiliate_system/services/rank_service.py
"""
Rank evaluation service.

A qualified rank is the highest rank whose thresholds are ALL met. Stored
ranks are sticky: evaluation only promotes, admins may set any rank.
"""
from decimal import Decimal
from typing import Optional, Dict, List
from sqlalchemy.orm import Session
import logging

import config
from models import User, BinaryTree, RankDefinition, RankHistory
from affiliate_system.config.ranks import defaultRankRows, BASE_RANK
from affiliate_system.config.settings import EngineSettings
from affiliate_system.errors import AffiliateError, ValidationError, ConfigurationError
from affiliate_system.events.event_bus import eventBus, AffiliateEvents
from affiliate_system.services.failure_service import FailureService
from affiliate_system.services.volume_service import VolumeService
from affiliate_system.utils.money import toDecimal

logger = logging.getLogger(__name__)

# metric name -> RankDefinition threshold column
THRESHOLDS = {
    "personalSales": "minPersonalSales",
    "teamSales": "minTeamSales",
    "leftLegVolume": "minLeftLegVolume",
    "rightLegVolume": "minRightLegVolume",
    "hashrateThs": "minHashrateThs",
    "directReferrals": "minDirectReferrals",
}


class RankService:
    """Service for managing user ranks and qualifications."""

    def __init__(self, session: Session, settings: Optional[EngineSettings] = None):
        self.session = session
        self.settings = settings or EngineSettings()
        self.volumeService = VolumeService(session, self.settings)

    def seedRankDefinitions(self) -> int:
        """Insert the default ladder into an empty rank_definitions table."""
        if self.session.query(RankDefinition).count() > 0:
            return 0

        rows = defaultRankRows()
        for row in rows:
            self.session.add(RankDefinition(**row))
        self.session.commit()

        logger.info(f"Seeded {len(rows)} rank definitions")
        return len(rows)

    def getRankDefinitions(self) -> List[RankDefinition]:
        """All ranks, highest level first."""
        definitions = self.session.query(RankDefinition).order_by(RankDefinition.rankLevel.desc()).all()
        if not definitions:
            raise ConfigurationError("No rank definitions configured")
        return definitions

    def getRankDefinition(self, rankName: str) -> RankDefinition:
        definition = self.session.query(RankDefinition).filter_by(rankName=rankName).first()
        if not definition:
            raise ValidationError(f"Unknown rank {rankName!r}")
        return definition

    def qualifiedRankFor(self, metrics: Dict[str, Decimal]) -> RankDefinition:
        """Highest rank whose every threshold is met; the base rank otherwise."""
        definitions = self.getRankDefinitions()

        for definition in definitions:
            if self._meetsAll(definition, metrics):
                return definition

        return definitions[-1]

    @staticmethod
    def _meetsAll(definition: RankDefinition, metrics: Dict[str, Decimal]) -> bool:
        for metric, column in THRESHOLDS.items():
            if toDecimal(metrics.get(metric)) < toDecimal(getattr(definition, column)):
                return False
        return True

    async def getQualifiedRank(self, userId: int) -> Dict:
        metrics = await self.volumeService.getRankMetrics(userId)
        definition = self.qualifiedRankFor(metrics)
        return {
            "userId": userId,
            "rank": definition.rankName,
            "rankLevel": definition.rankLevel,
            "weeklyCap": definition.weeklyCapAmount,
            "binaryCap": definition.binaryCapAmount,
            "metrics": metrics,
        }

    def getUserRankDefinition(self, userId: int) -> RankDefinition:
        """Definition of the user's stored rank; caps are read from here."""
        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            raise ValidationError(f"User {userId} not found")

        definition = self.session.query(RankDefinition).filter_by(rankName=user.rank or BASE_RANK).first()
        if definition is None:
            definition = self.getRankDefinitions()[-1]
            logger.warning(f"User {userId} has unknown rank {user.rank!r}, using {definition.rankName}")
        return definition

    def getWeeklyCap(self, userId: int) -> Decimal:
        return self.getUserRankDefinition(userId).weeklyCapAmount

    async def evaluateUser(self, userId: int) -> Optional[Dict]:
        """
        Promote the user if their qualified rank is above the stored one.
        Returns the promotion event data or None. Does not commit.
        """
        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            raise ValidationError(f"User {userId} not found")

        qualified = await self.getQualifiedRank(userId)
        if qualified["rankLevel"] <= (user.rankLevel or 0):
            return None

        previous = user.rank
        user.rank = qualified["rank"]
        user.rankLevel = qualified["rankLevel"]

        self.session.add(RankHistory(
            userID=userId,
            previousRank=previous,
            newRank=qualified["rank"],
            rankLevel=qualified["rankLevel"],
            criteriaMet={k: str(v) for k, v in qualified["metrics"].items()},
            qualificationMethod="natural",
        ))

        logger.info(f"User {userId} rank updated: {previous} -> {qualified['rank']} (natural)")
        return {
            "userId": userId,
            "previousRank": previous,
            "newRank": qualified["rank"],
            "rankLevel": qualified["rankLevel"],
        }

    async def evaluateAllRanks(self) -> Dict[str, int]:
        """Check and promote ranks for all placed users."""
        results = {
            "checked": 0,
            "promoted": 0,
            "failed": 0
        }
        promotions = []

        userIds = [row[0] for row in self.session.query(BinaryTree.userID).order_by(BinaryTree.userID).all()]

        for userId in userIds:
            try:
                results["checked"] += 1
                promotion = await self.evaluateUser(userId)
                self.session.commit()
                if promotion:
                    promotions.append(promotion)
                    results["promoted"] += 1
            except AffiliateError as e:
                self.session.rollback()
                results["failed"] += 1
                FailureService(self.session).recordFailure("rank_service", "rank_evaluation", userId, e)

        for promotion in promotions:
            await eventBus.emit(AffiliateEvents.RANK_PROMOTED, promotion)

        logger.info(
            f"Rank check complete: checked={results['checked']}, "
            f"promoted={results['promoted']}, failed={results['failed']}"
        )

        return results

    async def assignRankByAdmin(
            self,
            userId: int,
            rankName: str,
            adminId: int,
            notes: Optional[str] = None
    ) -> Dict:
        """Set a rank manually. The only path that can lower a rank."""
        if config.ADMINS and adminId not in config.ADMINS:
            raise ValidationError(f"User {adminId} is not allowed to assign ranks")

        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            raise ValidationError(f"User {userId} not found")

        definition = self.getRankDefinition(rankName)
        previous = user.rank

        user.rank = definition.rankName
        user.rankLevel = definition.rankLevel

        self.session.add(RankHistory(
            userID=userId,
            previousRank=previous,
            newRank=definition.rankName,
            rankLevel=definition.rankLevel,
            qualificationMethod="assigned",
            assignedBy=adminId,
            notes=notes,
        ))
        self.session.commit()

        logger.info(f"Rank {rankName} assigned to user {userId} by admin {adminId}")

        data = {
            "userId": userId,
            "previousRank": previous,
            "newRank": definition.rankName,
            "rankLevel": definition.rankLevel,
            "assignedBy": adminId,
        }
        await eventBus.emit(AffiliateEvents.RANK_ASSIGNED, data)
        return {"success": True, **data}
