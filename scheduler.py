import asyncio
import logging
from datetime import date
from typing import Dict, Optional

import config
from affiliate_system.config.ranks import JOB_DAILY_PIPELINE, JOB_WEEKLY_PIPELINE
from affiliate_system.services.settings_service import SettingsService
from affiliate_system.services.ghost_bv_service import GhostBVService
from affiliate_system.services.commission_service import CommissionService
from affiliate_system.services.rank_service import RankService
from affiliate_system.services.volume_service import VolumeService
from affiliate_system.services.leadership_pool_service import LeadershipPoolService
from affiliate_system.services.settlement_service import SettlementService
from affiliate_system.services.job_registry import JobRegistry
from affiliate_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class EngineScheduler:
    """
    Runs the engine's batch jobs in a fixed order.

    Daily: Ghost BV expiry -> volume flush -> Ghost BV grants ->
    commissions -> ranks -> hard cap audit.
    Mondays, for the previous week: binary -> leadership pool ->
    settlement -> finalization.
    """

    def __init__(self, session_factory=None, check_interval: int = None):
        if session_factory is None:
            from init import Session
            session_factory = Session
        self.session_factory = session_factory
        self.check_interval = check_interval or config.SCHEDULER_INTERVAL
        self._running = False

    async def run_daily(self) -> Dict:
        today = timeMachine.today
        with self.session_factory() as session:
            settings = SettingsService(session).loadSettings()

            results = {
                "expiry": await GhostBVService(session, settings).expireGrants(),
                "volumeFlush": await VolumeService(session, settings).flushOldVolume(today),
                "grants": await GhostBVService(session, settings).processPendingGrants(),
                "commissions": await CommissionService(session, settings).processPendingPurchases(),
                "ranks": await RankService(session, settings).evaluateAllRanks(),
                "hardCapAudit": await SettlementService(session, settings).auditHardCap(),
            }

            JobRegistry(session).markRun(JOB_DAILY_PIPELINE, today.isoformat(), {
                name: result.get("failed", 0) for name, result in results.items()
            })
            session.commit()

        logger.info(f"Daily pipeline {today} completed")
        return results

    async def run_weekly(self, week_start: Optional[date] = None) -> Dict:
        week_start = week_start or timeMachine.previousWeekStart
        with self.session_factory() as session:
            settings = SettingsService(session).loadSettings()
            settlement_service = SettlementService(session, settings)

            meta = settlement_service.getMeta(week_start)
            if meta:
                logger.warning(f"Week {week_start} already finalized outside the scheduler, skipping")
                JobRegistry(session).markRun(JOB_WEEKLY_PIPELINE, week_start.isoformat(), {
                    "merkleRoot": meta.merkleRoot,
                })
                session.commit()
                return {"skipped": True, "merkleRoot": meta.merkleRoot}

            results = {
                "binary": await CommissionService(session, settings).calculateBinaryCommissions(week_start),
                "leadership": await LeadershipPoolService(session, settings).distributeWeek(week_start),
                "settlement": await settlement_service.calculateWeek(week_start),
                "finalize": await settlement_service.finalizeWeek(week_start),
            }

            JobRegistry(session).markRun(JOB_WEEKLY_PIPELINE, week_start.isoformat(), {
                "merkleRoot": results["finalize"]["merkleRoot"],
            })
            session.commit()

        logger.info(f"Weekly pipeline for {week_start} completed, root {results['finalize']['merkleRoot']}")
        return results

    async def run_once(self) -> Dict:
        """Run whatever is due and has not run yet."""
        today = timeMachine.today
        done = {}

        with self.session_factory() as session:
            jobs = JobRegistry(session)
            daily_due = not jobs.hasRun(JOB_DAILY_PIPELINE, today.isoformat())
            weekly_due = timeMachine.isWeekStart and not jobs.hasRun(
                JOB_WEEKLY_PIPELINE, timeMachine.previousWeekStart.isoformat()
            )

        if daily_due:
            done["daily"] = await self.run_daily()
        if weekly_due:
            done["weekly"] = await self.run_weekly()

        return done

    async def run(self):
        """Check for due jobs every check_interval seconds until stopped."""
        logger.info("Engine scheduler started")
        self._running = True

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in engine scheduler main loop: {e}", exc_info=True)
            await asyncio.sleep(self.check_interval)

    async def stop(self):
        """Stop the loop after the current iteration."""
        self._running = False
        logger.info("Engine scheduler stopped")
