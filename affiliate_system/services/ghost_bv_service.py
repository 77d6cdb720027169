# affiliate_system/services/ghost_bv_service.py
"""
Ghost BV: time-boxed bonus volume injected into the buyer's weak leg.

Grants are created at most once per purchase; expiry removes exactly the
granted amount from exactly the leg it was added to, once.
"""
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models import Purchase, GhostBV
from affiliate_system.config.ranks import JOB_GHOST_EXPIRY
from affiliate_system.config.settings import EngineSettings
from affiliate_system.errors import AffiliateError, ValidationError
from affiliate_system.events.event_bus import eventBus, AffiliateEvents
from affiliate_system.services.binary_tree_service import BinaryTreeService
from affiliate_system.services.failure_service import FailureService
from affiliate_system.services.job_registry import JobRegistry
from affiliate_system.utils.money import money, toDecimal, ZERO
from affiliate_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class GhostBVService:

    def __init__(self, session: Session, settings: Optional[EngineSettings] = None):
        self.session = session
        self.settings = settings or EngineSettings()
        self.tree = BinaryTreeService(session, self.settings)

    def bvPercentFor(self, purchase: Purchase) -> Decimal:
        """Purchase override, then package, then the global default."""
        if purchase.packageBvPercent is not None:
            return toDecimal(purchase.packageBvPercent)
        if purchase.package is not None and purchase.package.bvPercent is not None:
            return toDecimal(purchase.package.bvPercent)
        return self.settings.ghostBvPercent

    def activeWeeklyTotal(self, userId: int, weekStart: date) -> Decimal:
        total = self.session.query(func.sum(GhostBV.amount)).filter(
            GhostBV.userID == userId,
            GhostBV.status == "active",
            GhostBV.startDate >= weekStart,
            GhostBV.startDate < weekStart + timedelta(days=7)
        ).scalar()
        return toDecimal(total) if total is not None else ZERO

    def getActiveGhostVolume(self, userId: int) -> Decimal:
        total = self.session.query(func.sum(GhostBV.amount)).filter(
            GhostBV.userID == userId,
            GhostBV.status == "active"
        ).scalar()
        return toDecimal(total) if total is not None else ZERO

    async def grantForPurchase(self, purchase: Purchase) -> Optional[GhostBV]:
        """
        Create the grant for one purchase. Does not commit.
        Returns None when nothing was granted.
        """
        if purchase.status != "COMPLETED":
            raise ValidationError(f"Purchase {purchase.purchaseID} is not completed")

        if self.session.query(GhostBV).filter_by(purchaseID=purchase.purchaseID).first():
            logger.warning(f"Ghost BV for purchase {purchase.purchaseID} already granted")
            purchase.ghostProcessedAt = purchase.ghostProcessedAt or timeMachine.now
            return None

        price = toDecimal(purchase.amountUsd)
        if price <= 0:
            raise ValidationError(f"Purchase {purchase.purchaseID} has no positive amount")

        userId = purchase.userID
        payLeg = self.tree.getWeakLeg(userId)

        today = timeMachine.today
        amount = money(price * self.bvPercentFor(purchase) / Decimal("100"))
        running = self.activeWeeklyTotal(userId, timeMachine.weekStartFor(today))
        cap = self.settings.ghostBvWeeklyCap

        if running + amount > cap:
            clamped = max(ZERO, cap - running)
            logger.info(
                f"Ghost BV for purchase {purchase.purchaseID} clamped {amount} -> {clamped} "
                f"(weekly total {running}, cap {cap})"
            )
            amount = clamped

        purchase.ghostProcessedAt = timeMachine.now

        if amount <= 0:
            logger.info(f"Ghost BV weekly cap reached for user {userId}, purchase {purchase.purchaseID} skipped")
            return None

        grant = GhostBV(
            userID=userId,
            purchaseID=purchase.purchaseID,
            amount=amount,
            originalPackageValue=price,
            payLeg=payLeg,
            startDate=today,
            expiresAt=today + timedelta(days=self.settings.ghostBvDurationDays),
            status="active",
        )
        self.session.add(grant)
        self.session.flush()

        await self.tree.addVolume(userId, payLeg, amount)

        logger.info(
            f"Ghost BV {amount} granted to user {userId} ({payLeg} leg) "
            f"until {grant.expiresAt} for purchase {purchase.purchaseID}"
        )
        return grant

    async def processPendingGrants(self) -> Dict:
        """Grant Ghost BV for every completed purchase not yet processed."""
        results = {"processed": 0, "granted": 0, "skipped": 0, "failed": 0, "totalGranted": ZERO}
        granted = []

        purchaseIds = [row[0] for row in self.session.query(Purchase.purchaseID).filter(
            Purchase.status == "COMPLETED",
            Purchase.ghostProcessedAt.is_(None)
        ).order_by(Purchase.completedAt, Purchase.purchaseID).all()]

        for purchaseId in purchaseIds:
            purchase = self.session.query(Purchase).filter_by(purchaseID=purchaseId).first()
            try:
                grant = await self.grantForPurchase(purchase)
                self.session.commit()
            except AffiliateError as e:
                self.session.rollback()
                results["failed"] += 1
                FailureService(self.session).recordFailure("ghost_bv_service", "ghost_grant", purchaseId, e)
                continue

            results["processed"] += 1
            if grant:
                results["granted"] += 1
                results["totalGranted"] += toDecimal(grant.amount)
                granted.append(grant)
            else:
                results["skipped"] += 1

        for grant in granted:
            await eventBus.emit(AffiliateEvents.GHOST_BV_GRANTED, {
                "userId": grant.userID,
                "grantId": grant.grantID,
                "amount": toDecimal(grant.amount),
                "payLeg": grant.payLeg,
                "expiresAt": grant.expiresAt,
            })

        logger.info(
            f"Ghost BV grants: processed={results['processed']}, granted={results['granted']}, "
            f"skipped={results['skipped']}, failed={results['failed']}, total={results['totalGranted']}"
        )
        return results

    async def expireGrant(self, grant: GhostBV, today: date) -> bool:
        """
        Flip one grant to expired and remove its volume. Does not commit.
        Returns False if another run already expired it.
        """
        updated = (
            self.session.query(GhostBV)
            .filter(GhostBV.grantID == grant.grantID, GhostBV.status == "active")
            .update({"status": "expired", "expiredAt": timeMachine.now}, synchronize_session=False)
        )
        if updated != 1:
            return False
        self.session.expire(grant)

        await self.tree.removeVolume(grant.userID, grant.payLeg, grant.amount)
        return True

    async def expireGrants(self) -> Dict:
        """
        Daily sweep: expire grants with expiresAt <= today.
        Records the run so the weekly settlement can check the order of jobs.
        """
        today = timeMachine.today
        results = {"date": today.isoformat(), "expired": 0, "failed": 0, "volumeRemoved": ZERO}
        expired = []

        grants = self.session.query(GhostBV).filter(
            GhostBV.status == "active",
            GhostBV.expiresAt <= today
        ).order_by(GhostBV.grantID).all()

        for grant in grants:
            try:
                done = await self.expireGrant(grant, today)
                self.session.commit()
            except AffiliateError as e:
                self.session.rollback()
                results["failed"] += 1
                FailureService(self.session).recordFailure("ghost_bv_service", "ghost_expiry", grant.grantID, e)
                continue

            if done:
                results["expired"] += 1
                results["volumeRemoved"] += toDecimal(grant.amount)
                expired.append(grant)

        JobRegistry(self.session).markRun(JOB_GHOST_EXPIRY, today.isoformat(), results)
        self.session.commit()

        for grant in expired:
            await eventBus.emit(AffiliateEvents.GHOST_BV_EXPIRED, {
                "userId": grant.userID,
                "grantId": grant.grantID,
                "amount": toDecimal(grant.amount),
                "payLeg": grant.payLeg,
            })

        logger.info(
            f"Ghost BV expiry sweep {today}: expired={results['expired']}, "
            f"failed={results['failed']}, removed={results['volumeRemoved']}"
        )
        return results
