# affiliate_system/services/commission_service.py
"""
Commission calculation service.

Direct and Override commissions are created per purchase; Binary is
computed once per user and week against the matched-volume watermark.
Records keep scaledAmount == baseAmount until weekly settlement.
"""
from datetime import date
from decimal import Decimal
from typing import List, Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models import (
    Purchase, BinaryTree, DirectCommission, OverrideCommission, BinaryCommission, SettlementMeta
)
from affiliate_system.config.settings import EngineSettings
from affiliate_system.errors import AffiliateError, ValidationError, SettlementFinalizedError
from affiliate_system.events.event_bus import eventBus, AffiliateEvents
from affiliate_system.services.binary_tree_service import BinaryTreeService
from affiliate_system.services.failure_service import FailureService
from affiliate_system.services.rank_service import RankService
from affiliate_system.services.volume_service import VolumeService
from affiliate_system.utils.locks import userLocks
from affiliate_system.utils.money import money, toDecimal, formatMoney, ZERO
from affiliate_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class CommissionService:
    """Service for calculating Direct, Override and Binary commissions."""

    def __init__(self, session: Session, settings: Optional[EngineSettings] = None):
        self.session = session
        self.settings = settings or EngineSettings()
        self.tree = BinaryTreeService(session, self.settings)
        self.volumeService = VolumeService(session, self.settings)

    def isWeekFinalized(self, weekStart: date) -> bool:
        return self.session.query(SettlementMeta).filter_by(weekStart=weekStart).first() is not None

    def commissionWeekFor(self, purchase: Purchase) -> date:
        """Week of the purchase; late purchases of a closed week go to the current week."""
        completedAt = purchase.completedAt or timeMachine.now
        weekStart = timeMachine.weekStartFor(completedAt)
        if self.isWeekFinalized(weekStart):
            current = timeMachine.currentWeekStart
            logger.warning(
                f"Purchase {purchase.purchaseID} belongs to finalized week {weekStart}, "
                f"booking commissions in {current}"
            )
            return current
        return weekStart

    async def processPurchase(self, purchaseId: int) -> Dict:
        """
        Process all per-purchase effects: volume propagation, Direct and
        Override commissions. At most once per purchase.
        """
        purchase = self.session.query(Purchase).filter_by(purchaseID=purchaseId).first()

        if not purchase:
            raise ValidationError(f"Purchase {purchaseId} not found")
        if purchase.status != "COMPLETED":
            raise ValidationError(f"Purchase {purchaseId} is not completed ({purchase.status})")
        if purchase.commissionProcessedAt is not None:
            logger.warning(f"Purchase {purchaseId} already processed")
            return {"success": True, "purchase": purchaseId, "skipped": True, "commissions": []}
        if toDecimal(purchase.amountUsd) <= 0:
            raise ValidationError(f"Purchase {purchaseId} has no positive amount")

        self.tree.getNode(purchase.userID)

        # Volume goes to the whole sponsor chain, commissions only to the paid depth
        links = self.tree.getUplineLinks(purchase.userID)
        depth = max(len(self.settings.directTierRates), self.settings.overrideLevels)
        paidLinks = [link for link in links if link.level <= depth]

        async with userLocks.hold([purchase.userID] + [link.ancestorID for link in links]):
            await self.volumeService.recordPurchaseVolume(purchase, links)

            weekStart = self.commissionWeekFor(purchase)
            commissions = []
            commissions += self._createDirectCommissions(purchase, paidLinks, weekStart)
            commissions += self._createOverrideCommissions(purchase, paidLinks, weekStart)

            purchase.bookedWeekStart = weekStart
            purchase.commissionProcessedAt = timeMachine.now
            purchase.processingError = None
            self.session.commit()

        results = {
            "success": True,
            "purchase": purchaseId,
            "weekStart": weekStart,
            "commissions": [self._describe(record) for record in commissions],
            "totalDistributed": sum((record.base for record in commissions), ZERO),
        }

        for record in commissions:
            await eventBus.emit(AffiliateEvents.COMMISSION_CREATED, self._describe(record))
        await eventBus.emit(AffiliateEvents.PURCHASE_PROCESSED, {
            "userId": purchase.userID,
            "purchaseId": purchaseId,
            "amount": toDecimal(purchase.amountUsd),
        })

        logger.info(
            f"Processed purchase {purchaseId}: "
            f"{len(results['commissions'])} commissions, "
            f"total {results['totalDistributed']}"
        )

        return results

    def getUnlockLevel(self, userId: int) -> int:
        """
        Highest direct tier a sponsor can earn, from their largest completed
        package: the package's own unlock level, or its price against the
        tier 2 and tier 3 thresholds. Tier 1 is always open.
        """
        level = 1
        purchases = self.session.query(Purchase).filter(
            Purchase.userID == userId,
            Purchase.status == "COMPLETED"
        ).all()

        for purchase in purchases:
            if purchase.package is not None and purchase.package.commissionUnlockLevel:
                level = max(level, purchase.package.commissionUnlockLevel)
                continue
            price = toDecimal(purchase.package.priceUsd if purchase.package is not None else purchase.amountUsd)
            if price >= self.settings.directTier3UnlockUsd:
                level = max(level, 3)
            elif price >= self.settings.directTier2UnlockUsd:
                level = max(level, 2)

        return level

    def _createDirectCommissions(self, purchase: Purchase, links, weekStart: date) -> List[DirectCommission]:
        amount = toDecimal(purchase.amountUsd)
        records = []

        for link in links:
            tier = link.level
            if tier > len(self.settings.directTierRates):
                break

            if self.settings.directTierUnlockEnabled and tier > self.getUnlockLevel(link.ancestorID):
                logger.info(
                    f"Direct tier {tier} locked for user {link.ancestorID} on purchase {purchase.purchaseID}"
                )
                continue

            exists = self.session.query(DirectCommission).filter_by(
                purchaseID=purchase.purchaseID, userID=link.ancestorID, tier=tier
            ).first()
            if exists:
                continue

            rate = self.settings.directRate(tier)
            value = money(amount * rate)
            if value <= 0:
                continue

            record = DirectCommission(
                userID=link.ancestorID,
                purchaseID=purchase.purchaseID,
                sourceUserID=purchase.userID,
                tier=tier,
                rate=float(rate),
                baseAmount=value,
                scaledAmount=value,
                scaleFactor=1.0,
                weekStart=weekStart,
                status="pending",
            )
            self.session.add(record)
            records.append(record)

        return records

    def _createOverrideCommissions(self, purchase: Purchase, links, weekStart: date) -> List[OverrideCommission]:
        amount = toDecimal(purchase.amountUsd)
        records = []

        for link in links:
            level = link.level
            if level > self.settings.overrideLevels:
                break

            exists = self.session.query(OverrideCommission).filter_by(
                purchaseID=purchase.purchaseID, userID=link.ancestorID, level=level
            ).first()
            if exists:
                continue

            rate = self.settings.overrideRate(level)
            value = money(amount * rate)
            if value <= 0:
                continue

            record = OverrideCommission(
                userID=link.ancestorID,
                purchaseID=purchase.purchaseID,
                sourceUserID=purchase.userID,
                level=level,
                rate=float(rate),
                baseAmount=value,
                scaledAmount=value,
                scaleFactor=1.0,
                weekStart=weekStart,
                status="pending",
            )
            self.session.add(record)
            records.append(record)

        return records

    async def processPendingPurchases(self) -> Dict:
        """Run processPurchase for every completed, unprocessed purchase."""
        results = {"processed": 0, "failed": 0, "commissions": 0, "totalDistributed": ZERO}

        purchaseIds = [row[0] for row in self.session.query(Purchase.purchaseID).filter(
            Purchase.status == "COMPLETED",
            Purchase.commissionProcessedAt.is_(None)
        ).order_by(Purchase.completedAt, Purchase.purchaseID).all()]

        for purchaseId in purchaseIds:
            try:
                outcome = await self.processPurchase(purchaseId)
            except AffiliateError as e:
                self.session.rollback()
                results["failed"] += 1
                self._markPurchaseError(purchaseId, e)
                FailureService(self.session).recordFailure("commission_service", "purchase", purchaseId, e)
                continue

            results["processed"] += 1
            results["commissions"] += len(outcome["commissions"])
            results["totalDistributed"] += outcome["totalDistributed"]

        logger.info(
            f"Commission run: processed={results['processed']}, failed={results['failed']}, "
            f"records={results['commissions']}, total={results['totalDistributed']}"
        )
        return results

    def _markPurchaseError(self, purchaseId: int, error: Exception):
        purchase = self.session.query(Purchase).filter_by(purchaseID=purchaseId).first()
        if purchase:
            purchase.processingError = str(error)[:500]

    # region Binary

    async def calculateBinaryCommissions(self, weekStart: date) -> Dict:
        """
        Pay the weekly binary commission on weak-leg volume not matched
        before. Once per (user, week); volume cut off by the rank's binary
        cap stays unmatched for later weeks.
        """
        if self.isWeekFinalized(weekStart):
            raise SettlementFinalizedError(f"Week {weekStart} is already finalized")

        results = {"weekStart": weekStart, "paid": 0, "skipped": 0, "failed": 0, "total": ZERO}
        created = []
        rankService = RankService(self.session, self.settings)

        userIds = [row[0] for row in self.session.query(BinaryTree.userID).order_by(BinaryTree.userID).all()]

        for userId in userIds:
            try:
                async with userLocks.hold([userId]):
                    record = self._calculateBinaryForUser(userId, weekStart, rankService)
                    self.session.commit()
            except AffiliateError as e:
                self.session.rollback()
                results["failed"] += 1
                FailureService(self.session).recordFailure("commission_service", "binary", userId, e)
                continue

            if record is None:
                results["skipped"] += 1
                continue

            results["paid"] += 1
            results["total"] += record.base
            created.append(record)

        for record in created:
            await eventBus.emit(AffiliateEvents.COMMISSION_CREATED, self._describe(record))

        logger.info(
            f"Binary commissions for {weekStart}: paid={results['paid']}, "
            f"skipped={results['skipped']}, failed={results['failed']}, total={results['total']}"
        )
        return results

    def _calculateBinaryForUser(self, userId: int, weekStart: date, rankService: RankService) -> Optional[BinaryCommission]:
        exists = self.session.query(BinaryCommission).filter_by(userID=userId, weekStart=weekStart).first()
        if exists:
            return None

        node = self.tree.refreshNode(userId)
        weakVolume = node.weakLegVolume
        matchedBefore = toDecimal(node.binaryMatchedVolume)
        available = node.binaryAvailableVolume
        if available <= 0:
            return None

        rate = self.settings.binaryFraction
        binaryCap = rankService.getUserRankDefinition(userId).binaryCapAmount

        value = money(available * rate)
        capApplied = None
        if value > binaryCap:
            value = binaryCap
            capApplied = binaryCap
        if value <= 0:
            return None

        matched = money(value / rate) if capApplied is not None else available
        self.tree._applyDelta(userId, {"binaryMatchedVolume": matched})

        record = BinaryCommission(
            userID=userId,
            rate=float(rate),
            baseAmount=value,
            scaledAmount=value,
            scaleFactor=1.0,
            weekStart=weekStart,
            status="pending",
            weakLegVolume=weakVolume,
            matchedBefore=matchedBefore,
            matchedVolume=matched,
            capApplied=capApplied,
        )
        self.session.add(record)

        logger.info(
            f"Binary for user {userId}, week {weekStart}: weak={weakVolume}, matched before={matchedBefore}, "
            f"paid={value}{' (capped)' if capApplied is not None else ''}"
        )
        return record

    # endregion

    async def getWeekBreakdown(self, userId: int, weekStart: Optional[date] = None) -> Dict[str, str]:
        """Earned (unscaled) commissions of a user for one week, as display strings."""
        weekStart = weekStart or timeMachine.currentWeekStart

        def total(model):
            value = self.session.query(func.sum(model.baseAmount)).filter(
                model.userID == userId,
                model.weekStart == weekStart
            ).scalar()
            return toDecimal(value) if value is not None else ZERO

        direct = total(DirectCommission)
        binary = total(BinaryCommission)
        override = total(OverrideCommission)

        return {
            "weekStart": weekStart.isoformat(),
            "direct": formatMoney(direct),
            "binary": formatMoney(binary),
            "override": formatMoney(override),
            "total": formatMoney(direct + binary + override),
        }

    @staticmethod
    def _describe(record) -> Dict:
        data = {
            "userId": record.userID,
            "type": record.commissionType,
            "amount": toDecimal(record.baseAmount),
            "weekStart": record.weekStart,
        }
        if record.commissionType == "direct":
            data.update({"purchaseId": record.purchaseID, "tier": record.tier})
        elif record.commissionType == "override":
            data.update({"purchaseId": record.purchaseID, "level": record.level})
        return data
