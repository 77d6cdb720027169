"""Tests for sales volume booking and the binary volume flush."""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from models import JobRun
from affiliate_system.config.ranks import JOB_VOLUME_FLUSH
from affiliate_system.services.commission_service import CommissionService
from affiliate_system.services.volume_service import VolumeService
from conftest import TODAY

WEEK = date(2025, 11, 3)
OLD = TODAY - timedelta(days=200)


@pytest.fixture
def commissions(session, settings):
    return CommissionService(session, settings)


@pytest.fixture
def volumes(session, settings):
    return VolumeService(session, settings)


async def binary_team(network):
    """Root with one partner on each leg."""
    root = await network.add()
    left = await network.add(sponsor=root, parent=root, slot="left")
    right = await network.add(sponsor=root, parent=root, slot="right")
    return root, left, right


async def buy(network, commissions, user, amount, completedAt=None):
    purchase = network.purchase(user, amount, completedAt=completedAt)
    await commissions.processPurchase(purchase.purchaseID)
    return purchase


class TestWeeklySalesVolume:

    @pytest.mark.asyncio
    async def test_counts_processed_purchases_of_the_booking_week(self, session, network, commissions, volumes):
        a, b = await network.chain(2)
        await buy(network, commissions, b, "700")
        network.purchase(b, "300")

        assert volumes.weeklySalesVolume(WEEK) == Decimal("700")
        assert volumes.weeklySalesVolume(WEEK - timedelta(days=7)) == Decimal("0")


class TestVolumeFlush:
    """Purchase volume older than volumeFlushDays stops counting for binary."""

    @pytest.mark.asyncio
    async def test_unmatched_aged_volume_is_written_off(self, session, network, commissions, volumes):
        root, left, right = await binary_team(network)
        old_left = await buy(network, commissions, left, "1000", completedAt=OLD)
        await buy(network, commissions, right, "300", completedAt=OLD)
        await commissions.calculateBinaryCommissions(date(2025, 10, 27))

        result = await volumes.flushOldVolume()

        node = network.tree.refreshNode(root.userID)
        assert result["flushed"] == 2
        assert result["writtenOff"] == Decimal("700")
        assert node.binaryMatchedVolume == Decimal("300")
        assert node.leftFlushedVolume == Decimal("700")
        assert node.rightFlushedVolume == Decimal("0")
        assert node.legVolume("left") == Decimal("1000")
        assert node.teamSales == Decimal("1300")
        session.refresh(old_left)
        assert old_left.volumeFlushedAt is not None

    @pytest.mark.asyncio
    async def test_flushed_volume_is_not_matched_again(self, session, network, commissions, volumes):
        root, left, right = await binary_team(network)
        await buy(network, commissions, left, "1000", completedAt=OLD)
        await buy(network, commissions, right, "300", completedAt=OLD)
        await commissions.calculateBinaryCommissions(date(2025, 10, 27))
        await volumes.flushOldVolume()

        await buy(network, commissions, right, "500")
        results = await commissions.calculateBinaryCommissions(WEEK)

        summary = await network.tree.getLegSummary(root.userID)
        assert results["paid"] == 0
        assert summary["unmatchedWeakVolume"] == Decimal("0")

    @pytest.mark.asyncio
    async def test_fresh_volume_still_matches_after_flush(self, session, network, commissions, volumes):
        root, left, right = await binary_team(network)
        await buy(network, commissions, left, "1000", completedAt=OLD)
        await volumes.flushOldVolume()

        await buy(network, commissions, left, "400")
        await buy(network, commissions, right, "600")
        await commissions.calculateBinaryCommissions(WEEK)

        node = network.tree.refreshNode(root.userID)
        assert node.leftFlushedVolume == Decimal("1000")
        assert node.binaryMatchedVolume == Decimal("400")

    @pytest.mark.asyncio
    async def test_recent_volume_is_kept(self, session, network, commissions, volumes):
        root, left, right = await binary_team(network)
        await buy(network, commissions, left, "1000", completedAt=TODAY - timedelta(days=100))

        result = await volumes.flushOldVolume()

        assert result["flushed"] == 0
        assert network.tree.refreshNode(root.userID).leftFlushedVolume == Decimal("0")

    @pytest.mark.asyncio
    async def test_runs_once_per_day(self, session, network, commissions, volumes, clock):
        root, left, right = await binary_team(network)
        await buy(network, commissions, left, "1000", completedAt=OLD)

        await volumes.flushOldVolume()
        again = await volumes.flushOldVolume()
        clock.advanceTime(days=1)
        next_day = await volumes.flushOldVolume()

        assert again["skipped"] is True
        assert next_day["flushed"] == 0
        assert network.tree.refreshNode(root.userID).leftFlushedVolume == Decimal("1000")
        assert session.query(JobRun).filter_by(jobName=JOB_VOLUME_FLUSH).count() == 2
