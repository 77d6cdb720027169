# affiliate_system/services/settlement_service.py
"""
Weekly settlement: aggregation, rank cap, and Merkle finalization.
"""
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

import config
from models import (
    BinaryTree, DirectCommission, BinaryCommission, OverrideCommission, LeadershipPoolShare,
    LeadershipPoolDistribution, WeeklySettlement, SettlementMeta, SettlementStatus
)
from affiliate_system.config.ranks import JOB_GHOST_EXPIRY, JOB_SETTLEMENT_CALCULATION, JOB_WEEKLY_SETTLEMENT
from affiliate_system.config.settings import EngineSettings
from affiliate_system.errors import JobSequenceError, ValidationError, InvariantViolationError
from affiliate_system.events.event_bus import eventBus, AffiliateEvents
from affiliate_system.services.failure_service import FailureService
from affiliate_system.services.job_registry import JobRegistry
from affiliate_system.services.rank_service import RankService
from affiliate_system.services.volume_service import VolumeService
from affiliate_system.utils.merkle import MerkleTree, encodeLeaf, toHex, toBaseUnits, weekStartUnix
from affiliate_system.utils.money import money, toDecimal, ZERO
from affiliate_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)

ONE = Decimal("1")

COMMISSION_MODELS = {
    "direct": DirectCommission,
    "binary": BinaryCommission,
    "override": OverrideCommission,
}


class SettlementService:

    def __init__(self, session: Session, settings: Optional[EngineSettings] = None):
        self.session = session
        self.settings = settings or EngineSettings()
        self.rankService = RankService(session, self.settings)
        self.volumeService = VolumeService(session, self.settings)
        self.jobs = JobRegistry(session)

    def getMeta(self, weekStart: date) -> Optional[SettlementMeta]:
        return self.session.query(SettlementMeta).filter_by(weekStart=weekStart).first()

    def getSettlement(self, userId: int, weekStart: date) -> Optional[WeeklySettlement]:
        return self.session.query(WeeklySettlement).filter_by(userID=userId, weekStart=weekStart).first()

    def scaleFactors(self, totals: Dict[str, Decimal], salesVolume: Decimal) -> Dict[str, Decimal]:
        """
        Per-type factors <= 1 that keep each commission type inside its
        pool and the sum inside the global cap, all as % of sales volume.
        """
        factors = {kind: ONE for kind in COMMISSION_MODELS}
        if not self.settings.poolScalingEnabled:
            return factors

        budgets = {
            "direct": salesVolume * self.settings.directPoolPercent / Decimal("100"),
            "binary": salesVolume * self.settings.binaryPoolPercent / Decimal("100"),
            "override": salesVolume * self.settings.overridePoolPercent / Decimal("100"),
        }
        for kind, total in totals.items():
            if total > budgets[kind]:
                factors[kind] = budgets[kind] / total

        scaledTotal = sum((totals[kind] * factors[kind] for kind in totals), ZERO)
        globalBudget = salesVolume * self.settings.globalCapPercent / Decimal("100")
        if scaledTotal > globalBudget:
            adjustment = globalBudget / scaledTotal
            factors = {kind: factor * adjustment for kind, factor in factors.items()}

        return factors

    async def calculateWeek(self, weekStart: Optional[date] = None) -> Dict:
        """
        Aggregate every user's commissions for the week and apply the
        weekly cap. Upsert by (user, week); a finalized week is returned
        untouched.
        """
        weekStart = weekStart or timeMachine.previousWeekStart
        today = timeMachine.today

        if not self.jobs.hasRun(JOB_GHOST_EXPIRY, today.isoformat()):
            raise JobSequenceError(
                f"Ghost BV expiry sweep has not run for {today}; settlement of {weekStart} refused"
            )

        meta = self.getMeta(weekStart)
        if meta:
            logger.warning(f"Week {weekStart} already finalized, calculation skipped")
            return {
                "success": True,
                "skipped": True,
                "weekStart": weekStart,
                "merkleRoot": meta.merkleRoot,
                "users": meta.totalUsers,
            }

        records = {}
        totals = {}
        for kind, model in COMMISSION_MODELS.items():
            records[kind] = self.session.query(model).filter(model.weekStart == weekStart).all()
            totals[kind] = sum((record.base for record in records[kind]), ZERO)

        shares = self.session.query(LeadershipPoolShare).filter_by(weekStart=weekStart).all()
        carryIns = self._carryIns(weekStart)

        salesVolume = self.volumeService.weeklySalesVolume(weekStart)
        factors = self.scaleFactors(totals, salesVolume)

        byUser = defaultdict(lambda: {kind: [] for kind in COMMISSION_MODELS})
        for kind, items in records.items():
            for record in items:
                byUser[record.userID][kind].append(record)

        leadership = defaultdict(lambda: ZERO)
        for share in shares:
            leadership[share.userID] += toDecimal(share.amount)

        userIds = sorted(set(byUser) | set(leadership) | set(carryIns))
        summary = {"users": 0, "capped": 0, "totalRaw": ZERO, "totalGrand": ZERO, "totalCarryForward": ZERO}
        settlements = []

        for userId in userIds:
            settlement = self._settleUser(
                userId, weekStart, byUser[userId], factors, leadership[userId], carryIns.get(userId, ZERO)
            )
            settlements.append(settlement)
            summary["users"] += 1
            summary["totalRaw"] += toDecimal(settlement.rawTotal)
            summary["totalGrand"] += settlement.grandTotalAmount
            summary["totalCarryForward"] += settlement.carryForwardAmount
            if settlement.carryForwardAmount > 0:
                summary["capped"] += 1

        stale = self.session.query(WeeklySettlement).filter(
            WeeklySettlement.weekStart == weekStart,
            WeeklySettlement.isFinalized == False,
            WeeklySettlement.userID.notin_(userIds) if userIds else WeeklySettlement.userID.isnot(None)
        ).all()
        for settlement in stale:
            self.session.delete(settlement)

        self.jobs.markRun(JOB_SETTLEMENT_CALCULATION, weekStart.isoformat(), summary)
        self.session.commit()

        for settlement in settlements:
            await eventBus.emit(AffiliateEvents.SETTLEMENT_CALCULATED, {
                "userId": settlement.userID,
                "weekStart": weekStart,
                "grandTotal": settlement.grandTotalAmount,
                "carryForward": settlement.carryForwardAmount,
            })

        logger.info(
            f"Settlement for {weekStart}: users={summary['users']}, capped={summary['capped']}, "
            f"raw={summary['totalRaw']}, paid={summary['totalGrand']}, "
            f"factors={ {k: str(v) for k, v in factors.items()} }"
        )

        return {
            "success": True,
            "weekStart": weekStart,
            "salesVolume": salesVolume,
            "scaleFactors": factors,
            **summary,
        }

    def _carryIns(self, weekStart: date) -> Dict[int, Decimal]:
        if self.settings.carryForwardMode != "rollover":
            return {}

        previous = self.session.query(WeeklySettlement).filter(
            WeeklySettlement.weekStart == weekStart - timedelta(days=7),
            WeeklySettlement.carryForward > 0
        ).all()
        return {settlement.userID: settlement.carryForwardAmount for settlement in previous}

    def _settleUser(
            self,
            userId: int,
            weekStart: date,
            records: Dict[str, list],
            factors: Dict[str, Decimal],
            leadershipTotal: Decimal,
            carryIn: Decimal
    ) -> WeeklySettlement:
        scaled = {kind: ZERO for kind in COMMISSION_MODELS}
        directTiers = {1: ZERO, 2: ZERO, 3: ZERO}

        for kind, items in records.items():
            for record in items:
                value = money(record.base * factors[kind])
                scaled[kind] += value
                if kind == "direct":
                    directTiers[record.tier] += value

        rawTotal = scaled["direct"] + scaled["binary"] + scaled["override"] + leadershipTotal + carryIn
        weeklyCap = min(self.rankService.getWeeklyCap(userId), self.settings.settlementHardCap)
        grandTotal = min(rawTotal, weeklyCap)
        carryForward = max(ZERO, rawTotal - weeklyCap)
        capFactor = grandTotal / rawTotal if rawTotal > weeklyCap else ONE

        for kind, items in records.items():
            for record in items:
                factor = factors[kind] * capFactor
                record.scaledAmount = money(record.base * factor)
                record.scaleFactor = float(factor)

        settlement = self.getSettlement(userId, weekStart)
        if settlement is None:
            settlement = WeeklySettlement(userID=userId, weekStart=weekStart)
            self.session.add(settlement)
        elif settlement.isFinalized:
            raise ValidationError(f"Settlement {settlement.settlementID} is already finalized")

        node = self.session.query(BinaryTree).filter_by(userID=userId).first()

        settlement.weekEnd = timeMachine.weekEndFor(weekStart)
        settlement.directL1 = directTiers[1]
        settlement.directL2 = directTiers[2]
        settlement.directL3 = directTiers[3]
        settlement.directTotal = scaled["direct"]
        settlement.binaryTotal = scaled["binary"]
        settlement.overrideTotal = scaled["override"]
        settlement.leadershipTotal = leadershipTotal
        settlement.carryIn = carryIn
        settlement.weakLegVolume = node.weakLegVolume if node else ZERO
        settlement.strongLegVolume = node.strongLegVolume if node else ZERO
        settlement.rawTotal = rawTotal
        settlement.weeklyCap = weeklyCap
        settlement.grandTotal = grandTotal
        settlement.carryForward = carryForward
        settlement.scaleFactorApplied = float(capFactor)
        settlement.status = SettlementStatus.IN_PROGRESS

        if carryForward > 0:
            logger.info(
                f"User {userId} capped for {weekStart}: raw={rawTotal}, cap={weeklyCap}, "
                f"carry forward={carryForward} ({self.settings.carryForwardMode})"
            )
        return settlement

    async def finalizeWeek(self, weekStart: date) -> Dict:
        """
        Commit the Merkle tree for the week: every settlement gets its leaf
        and proof in the same transaction, or none does. Idempotent.
        """
        meta = self.getMeta(weekStart)
        if meta:
            logger.warning(f"Week {weekStart} already finalized with root {meta.merkleRoot}")
            return {
                "success": True,
                "alreadyFinalized": True,
                "weekStart": weekStart,
                "merkleRoot": meta.merkleRoot,
                "totalUsers": meta.totalUsers,
                "totalAmount": toDecimal(meta.totalAmount),
            }

        if not self.jobs.hasRun(JOB_SETTLEMENT_CALCULATION, weekStart.isoformat()):
            raise JobSequenceError(f"Settlement for {weekStart} has not been calculated")

        settlements = self.session.query(WeeklySettlement).filter_by(
            weekStart=weekStart
        ).order_by(WeeklySettlement.userID).all()

        try:
            leaves = {
                settlement.settlementID: encodeLeaf(
                    settlement.userID, weekStart, settlement.grandTotalAmount, config.PAYOUT_TOKEN_DECIMALS
                )
                for settlement in settlements
            }
            tree = MerkleTree(list(leaves.values()))
            root = toHex(tree.root)

            totalAmount = ZERO
            for settlement in settlements:
                leaf = leaves[settlement.settlementID]
                settlement.merkleLeaf = toHex(leaf)
                settlement.merkleProof = [toHex(node) for node in tree.getProof(leaf)]
                settlement.merkleRoot = root
                settlement.isFinalized = True
                settlement.status = SettlementStatus.READY_TO_CLAIM
                totalAmount += settlement.grandTotalAmount

            for model in COMMISSION_MODELS.values():
                self.session.query(model).filter(model.weekStart == weekStart).update(
                    {"status": "settled"}, synchronize_session=False
                )

            distribution = self.session.query(LeadershipPoolDistribution).filter_by(weekStart=weekStart).first()
            if distribution:
                distribution.status = "distributed"
                distribution.distributedAt = timeMachine.now

            meta = SettlementMeta(
                weekStart=weekStart,
                merkleRoot=root,
                totalUsers=len(settlements),
                totalAmount=totalAmount,
                salesVolume=self.volumeService.weeklySalesVolume(weekStart),
            )
            self.session.add(meta)

            self.jobs.markRun(JOB_WEEKLY_SETTLEMENT, weekStart.isoformat(), {
                "merkleRoot": root, "users": len(settlements), "totalAmount": totalAmount,
            })
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Finalization of {weekStart} failed, nothing committed: {e}", exc_info=True)
            raise

        logger.info(f"Week {weekStart} finalized: root={root}, users={len(settlements)}, total={totalAmount}")

        for settlement in settlements:
            await eventBus.emit(AffiliateEvents.SETTLEMENT_CLAIMABLE, {
                "userId": settlement.userID,
                "settlementId": settlement.settlementID,
                "weekStart": weekStart,
                "grandTotal": settlement.grandTotalAmount,
            })

        return {
            "success": True,
            "alreadyFinalized": False,
            "weekStart": weekStart,
            "merkleRoot": root,
            "totalUsers": len(settlements),
            "totalAmount": totalAmount,
        }

    def getClaimPayload(self, settlementId: int) -> Dict:
        """What the claim UI passes to the payout contract."""
        settlement = self.session.query(WeeklySettlement).filter_by(settlementID=settlementId).first()
        if not settlement:
            raise ValidationError(f"Settlement {settlementId} not found")
        if not settlement.isFinalized:
            raise ValidationError(f"Settlement {settlementId} is not finalized")

        return {
            "settlementId": settlement.settlementID,
            "userId": settlement.userID,
            "weekStart": settlement.weekStart.isoformat(),
            "weekStartUnix": weekStartUnix(settlement.weekStart),
            "amount": str(settlement.grandTotalAmount),
            "amountBaseUnits": str(toBaseUnits(settlement.grandTotalAmount, config.PAYOUT_TOKEN_DECIMALS)),
            "merkleRoot": settlement.merkleRoot,
            "merkleLeaf": settlement.merkleLeaf,
            "merkleProof": list(settlement.merkleProof or []),
            "status": settlement.status,
        }

    async def auditHardCap(self, weekStart: Optional[date] = None) -> Dict:
        """
        Flag settlements whose grand total exceeds the absolute hard cap.
        Amounts are never changed here: a finalized row is committed to a
        Merkle root, an open one is re-capped by the next calculateWeek.
        """
        hardCap = self.settings.settlementHardCap
        query = self.session.query(WeeklySettlement).filter(
            WeeklySettlement.grandTotal > hardCap,
            WeeklySettlement.capViolation == False
        )
        if weekStart is not None:
            query = query.filter(WeeklySettlement.weekStart == weekStart)
        violations = query.order_by(WeeklySettlement.settlementID).all()

        flagged = []
        for settlement in violations:
            settlement.capViolation = True
            flagged.append({
                "settlementId": settlement.settlementID,
                "userId": settlement.userID,
                "weekStart": settlement.weekStart,
                "grandTotal": settlement.grandTotalAmount,
                "isFinalized": settlement.isFinalized,
            })
        self.session.commit()

        failures = FailureService(self.session)
        for item in flagged:
            logger.warning(
                f"Hard cap violation: user {item['userId']} week {item['weekStart']} "
                f"total {item['grandTotal']} > {hardCap} (finalized={item['isFinalized']})"
            )
            failures.recordFailure(
                "settlement_service",
                "hard_cap_violation",
                item["settlementId"],
                InvariantViolationError(
                    f"Settlement {item['settlementId']} total {item['grandTotal']} exceeds hard cap {hardCap}"
                ),
            )

        if not flagged:
            logger.info(f"Hard cap audit: no settlements above {hardCap}")
        return {"success": True, "hardCap": hardCap, "violations": flagged}
