"""Tests for Ghost BV grants, the weekly clamp and the expiry sweep."""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from models import User, GhostBV, FailedEvent, JobRun
from affiliate_system.config.ranks import JOB_GHOST_EXPIRY
from affiliate_system.events.event_bus import AffiliateEvents
from affiliate_system.services.ghost_bv_service import GhostBVService


@pytest.fixture
def ghost(session, settings):
    return GhostBVService(session, settings)


class TestGrants:
    """One grant per purchase into the buyer's weak leg."""

    @pytest.mark.asyncio
    async def test_grant_uses_global_percent(self, session, network, ghost):
        root = await network.add()
        network.purchase(root, "1000")

        results = await ghost.processPendingGrants()

        grant = session.query(GhostBV).one()
        assert results["granted"] == 1
        assert grant.amount == Decimal("800.00")
        assert grant.payLeg == "left"
        assert grant.startDate == date(2025, 11, 5)
        assert grant.expiresAt == date(2025, 11, 15)
        assert network.tree.refreshNode(root.userID).legVolume("left") == Decimal("800")

    @pytest.mark.asyncio
    async def test_package_and_purchase_percent_take_precedence(self, session, network, ghost):
        root = await network.add()
        package = network.package(price="1000", bvPercent="50")
        fromPackage = network.purchase(root, "1000", package=package)
        fromPurchase = network.purchase(root, "1000", bvPercent="25", package=package)

        assert ghost.bvPercentFor(fromPackage) == Decimal("50")
        assert ghost.bvPercentFor(fromPurchase) == Decimal("25")

    @pytest.mark.asyncio
    async def test_weekly_cap_clamps_grant(self, session, network, ghost):
        root = await network.add()
        network.purchase(root, "22500")
        await ghost.processPendingGrants()
        assert ghost.activeWeeklyTotal(root.userID, date(2025, 11, 3)) == Decimal("18000")

        network.purchase(root, "10000")
        await ghost.processPendingGrants()

        amounts = [grant.amount for grant in session.query(GhostBV).order_by(GhostBV.grantID)]
        assert amounts == [Decimal("18000.00"), Decimal("2000.00")]

        node = network.tree.refreshNode(root.userID)
        assert node.legVolume("left") == Decimal("18000")
        assert node.legVolume("right") == Decimal("2000")

    @pytest.mark.asyncio
    async def test_purchase_beyond_cap_is_skipped(self, session, network, ghost):
        root = await network.add()
        network.purchase(root, "25000")
        await ghost.processPendingGrants()

        late = network.purchase(root, "1000")
        results = await ghost.processPendingGrants()

        assert results["skipped"] == 1
        assert session.query(GhostBV).count() == 1
        assert late.ghostProcessedAt is not None

    @pytest.mark.asyncio
    async def test_grant_is_created_once(self, session, network, ghost, captured_events):
        events = captured_events(AffiliateEvents.GHOST_BV_GRANTED)
        root = await network.add()
        purchase = network.purchase(root, "1000")

        await ghost.processPendingGrants()
        await ghost.processPendingGrants()
        assert await ghost.grantForPurchase(purchase) is None

        assert session.query(GhostBV).count() == 1
        assert network.tree.refreshNode(root.userID).legVolume("left") == Decimal("800")
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_unplaced_buyer_is_recorded_as_failure(self, session, network, ghost):
        await network.add()
        stranger = User(email="stranger@synterax.test")
        session.add(stranger)
        session.commit()
        network.purchase(stranger, "1000")

        results = await ghost.processPendingGrants()

        assert results["failed"] == 1
        failure = session.query(FailedEvent).one()
        assert failure.eventType == "ghost_grant"
        assert failure.errorKind == "validation"


class TestExpiry:
    """Daily sweep removes exactly what was granted, once."""

    @pytest.mark.asyncio
    async def test_volume_leaves_on_expiry_day(self, session, network, ghost, clock):
        root = await network.add()
        network.purchase(root, "2500")
        await ghost.processPendingGrants()

        clock.advanceTime(days=9)
        results = await ghost.expireGrants()
        assert results["expired"] == 0
        assert network.tree.refreshNode(root.userID).legVolume("left") == Decimal("2000")

        clock.advanceTime(days=1)
        results = await ghost.expireGrants()
        assert results["expired"] == 1
        assert results["volumeRemoved"] == Decimal("2000")
        assert network.tree.refreshNode(root.userID).legVolume("left") == Decimal("0")

        grant = session.query(GhostBV).one()
        assert grant.status == "expired"
        assert grant.expiredAt is not None

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, session, network, ghost, clock):
        root = await network.add()
        network.purchase(root, "1000")
        await ghost.processPendingGrants()

        clock.advanceTime(days=10)
        await ghost.expireGrants()
        again = await ghost.expireGrants()
        clock.advanceTime(days=1)
        later = await ghost.expireGrants()

        assert again["expired"] == 0
        assert later["expired"] == 0
        assert network.tree.refreshNode(root.userID).legVolume("left") == Decimal("0")

    @pytest.mark.asyncio
    async def test_sweep_records_job_run(self, session, ghost):
        await ghost.expireGrants()

        run = session.query(JobRun).filter_by(jobName=JOB_GHOST_EXPIRY).one()
        assert run.runKey == "2025-11-05"

    @pytest.mark.asyncio
    async def test_expiry_never_clamps_negative_volume(self, session, network, ghost, clock):
        root = await network.add()
        network.purchase(root, "1000")
        await ghost.processPendingGrants()
        network.tree._applyDelta(root.userID, {"leftVolume": Decimal("-500")})
        session.commit()

        clock.advanceTime(days=10)
        results = await ghost.expireGrants()

        assert results["failed"] == 1
        assert session.query(GhostBV).one().status == "active"
        assert network.tree.refreshNode(root.userID).legVolume("left") == Decimal("300")
        failure = session.query(FailedEvent).one()
        assert failure.errorKind == "invariant"
        assert failure.eventType == "ghost_expiry"

    @pytest.mark.asyncio
    async def test_grants_from_several_days_expire_separately(self, session, network, ghost, clock):
        root = await network.add()
        network.purchase(root, "1000")
        await ghost.processPendingGrants()

        clock.advanceTime(days=3)
        network.purchase(root, "500")
        await ghost.processPendingGrants()

        clock.advanceTime(days=7)
        first = await ghost.expireGrants()
        clock.advanceTime(days=3)
        second = await ghost.expireGrants()

        assert first["volumeRemoved"] == Decimal("800")
        assert second["volumeRemoved"] == Decimal("400")
        node = network.tree.refreshNode(root.userID)
        assert node.legVolume("left") == Decimal("0")
        assert node.legVolume("right") == Decimal("0")
        assert ghost.getActiveGhostVolume(root.userID) == Decimal("0")
