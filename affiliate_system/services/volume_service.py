# affiliate_system/services/volume_service.py
"""
Volume tracking service: sales ledger and sponsor-chain propagation.
"""
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models import User, Purchase, ReferralLink
from affiliate_system.config.ranks import LEGS, JOB_VOLUME_FLUSH
from affiliate_system.config.settings import EngineSettings
from affiliate_system.errors import ValidationError
from affiliate_system.services.binary_tree_service import BinaryTreeService
from affiliate_system.services.job_registry import JobRegistry
from affiliate_system.utils.locks import userLocks
from affiliate_system.utils.money import toDecimal, ZERO
from affiliate_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class VolumeService:
    """Service for tracking personal sales, team sales and leg volumes."""

    def __init__(self, session: Session, settings: Optional[EngineSettings] = None):
        self.session = session
        self.settings = settings or EngineSettings()
        self.tree = BinaryTreeService(session, self.settings)
        self.jobs = JobRegistry(session)

    async def recordPurchaseVolume(
            self,
            purchase: Purchase,
            links: Optional[List[ReferralLink]] = None
    ) -> Dict:
        """
        Credit a purchase: personal sales and hashrate to the buyer, team
        sales and leg volume to every sponsor ancestor.
        """
        amount = toDecimal(purchase.amountUsd)
        if amount <= 0:
            raise ValidationError(f"Purchase {purchase.purchaseID} has no positive amount")

        userId = purchase.userID
        self.tree._applyDelta(userId, {"personalSales": amount})

        user = self.session.query(User).filter_by(userID=userId).first()
        hashrate = toDecimal(purchase.hashrateThs)
        if hashrate > 0:
            user.hashrateThs = user.hashrate + hashrate

        if links is None:
            links = self.tree.getUplineLinks(userId)

        for link in links:
            self.tree._applyDelta(link.ancestorID, {
                "teamSales": amount,
                f"{link.leg}Volume": amount,
            })

        logger.info(
            f"Volume for purchase {purchase.purchaseID}: {amount} personal to user {userId}, "
            f"team/leg volume to {len(links)} ancestors"
        )

        return {"userId": userId, "amount": amount, "ancestors": len(links)}

    async def getRankMetrics(self, userId: int) -> Dict[str, Decimal]:
        """Aggregates the rank evaluator needs for one user."""
        node = self.tree.refreshNode(userId)
        user = self.session.query(User).filter_by(userID=userId).first()

        return {
            "personalSales": toDecimal(node.personalSales),
            "teamSales": toDecimal(node.teamSales),
            "leftLegVolume": node.legVolume("left"),
            "rightLegVolume": node.legVolume("right"),
            "hashrateThs": user.hashrate,
            "directReferrals": self.tree.countDirectReferrals(userId),
        }

    def weeklySalesVolume(self, weekStart: date) -> Decimal:
        """
        Processed purchases booked into the week. A late purchase of an
        already finalized week counts where its commissions were booked.
        """
        total = self.session.query(func.sum(Purchase.amountUsd)).filter(
            Purchase.status == "COMPLETED",
            Purchase.commissionProcessedAt.isnot(None),
            Purchase.bookedWeekStart == weekStart
        ).scalar()
        return toDecimal(total) if total is not None else ZERO

    async def flushOldVolume(self, today: Optional[date] = None) -> Dict:
        """
        Age purchase volume out of binary matching after volumeFlushDays.

        Leg and team volumes stay cumulative; the aged volume is written off
        per leg instead. Matching consumes each leg oldest first, so only the
        part of the aged volume not already matched is written off.
        """
        today = today or timeMachine.today
        if self.jobs.hasRun(JOB_VOLUME_FLUSH, today.isoformat()):
            logger.info(f"Volume flush already ran for {today}")
            return {"success": True, "skipped": True, "flushed": 0, "amount": ZERO}

        cutoff = timeMachine.startOfDay(today - timedelta(days=self.settings.volumeFlushDays))
        purchases = self.session.query(Purchase).filter(
            Purchase.status == "COMPLETED",
            Purchase.commissionProcessedAt.isnot(None),
            Purchase.volumeFlushedAt.is_(None),
            Purchase.completedAt < cutoff
        ).order_by(Purchase.purchaseID).all()

        results = {"success": True, "flushed": 0, "amount": ZERO, "writtenOff": ZERO, "nodes": 0}
        touched = set()

        for purchase in purchases:
            purchase.volumeFlushedAt = timeMachine.now
            results["flushed"] += 1
            results["amount"] += toDecimal(purchase.amountUsd)
            touched.update(link.ancestorID for link in self.tree.getUplineLinks(purchase.userID))
        self.session.flush()

        async with userLocks.hold(sorted(touched)):
            for ancestorId in sorted(touched):
                writtenOff = self._writeOffAgedVolume(ancestorId)
                if writtenOff > 0:
                    results["nodes"] += 1
                    results["writtenOff"] += writtenOff

        self.jobs.markRun(JOB_VOLUME_FLUSH, today.isoformat(), {
            "flushed": results["flushed"],
            "writtenOff": str(results["writtenOff"]),
        })
        self.session.commit()

        logger.info(
            f"Volume flush {today}: {results['flushed']} purchases older than {cutoff.date()} "
            f"({results['amount']}), {results['writtenOff']} unmatched volume written off "
            f"on {results['nodes']} nodes"
        )
        return results

    def _agedLegVolume(self, ancestorId: int, leg: str) -> Decimal:
        total = self.session.query(func.sum(Purchase.amountUsd)).join(
            ReferralLink, ReferralLink.descendantID == Purchase.userID
        ).filter(
            ReferralLink.ancestorID == ancestorId,
            ReferralLink.leg == leg,
            Purchase.volumeFlushedAt.isnot(None)
        ).scalar()
        return toDecimal(total) if total is not None else ZERO

    def _writeOffAgedVolume(self, ancestorId: int) -> Decimal:
        node = self.tree.refreshNode(ancestorId)
        deltas = {}
        for leg in LEGS:
            consumed = node.consumedVolume(leg)
            aged = self._agedLegVolume(ancestorId, leg)
            if aged > consumed:
                deltas[f"{leg}FlushedVolume"] = aged - consumed

        if deltas:
            self.tree._applyDelta(ancestorId, deltas)
        return sum(deltas.values(), ZERO)
