"""Tests for rank qualification, sticky ranks and admin assignment."""

import pytest
from decimal import Decimal

from models import RankHistory
from affiliate_system.errors import ValidationError
from affiliate_system.events.event_bus import AffiliateEvents
from affiliate_system.services.rank_service import RankService
from conftest import ADMIN_ID


def metrics(personal, team, left, right, hashrate, directs):
    return {
        "personalSales": Decimal(personal),
        "teamSales": Decimal(team),
        "leftLegVolume": Decimal(left),
        "rightLegVolume": Decimal(right),
        "hashrateThs": Decimal(hashrate),
        "directReferrals": directs,
    }


async def qualify_for_corporal(network, session):
    """A user with volumes and one direct referral above the Corporal line."""
    root = await network.add()
    user = await network.add(sponsor=root, parent=root, slot="left")
    await network.add(sponsor=user)

    network.tree._applyDelta(user.userID, {
        "personalSales": Decimal("600"),
        "teamSales": Decimal("3000"),
        "leftVolume": Decimal("1500"),
        "rightVolume": Decimal("1200"),
    })
    user.hashrateThs = Decimal("6")
    session.commit()
    return user


class TestQualification:
    """Highest rank whose every threshold is met."""

    def test_one_missing_threshold_blocks_the_rank(self, session):
        service = RankService(session)
        # ten times every Major threshold except hashrate
        rank = service.qualifiedRankFor(metrics("50000", "500000", "200000", "200000", "99", 50))

        assert rank.rankName == "Captain"

    def test_all_thresholds_met(self, session):
        service = RankService(session)
        rank = service.qualifiedRankFor(metrics("50000", "500000", "200000", "200000", "100", 50))

        assert rank.rankName == "Major"

    def test_nothing_met_gives_base_rank(self, session):
        service = RankService(session)
        rank = service.qualifiedRankFor(metrics("0", "0", "0", "0", "0", 0))

        assert rank.rankName == "Private"
        assert rank.rankLevel == 1

    def test_unknown_rank_name(self, session):
        with pytest.raises(ValidationError):
            RankService(session).getRankDefinition("Admiral")

    def test_weekly_cap_from_stored_rank(self, session):
        definition = RankService(session).getRankDefinition("Colonel")

        assert definition.weeklyCapAmount == Decimal("15000")
        assert definition.binaryCapAmount == Decimal("4000")


class TestEvaluation:
    """Daily evaluation promotes and never demotes."""

    @pytest.mark.asyncio
    async def test_promotion_writes_history(self, session, network, captured_events):
        events = captured_events(AffiliateEvents.RANK_PROMOTED)
        user = await qualify_for_corporal(network, session)

        results = await RankService(session).evaluateAllRanks()

        assert results["promoted"] == 1
        assert results["failed"] == 0
        assert user.rank == "Corporal"
        assert user.rankLevel == 2

        history = session.query(RankHistory).filter_by(userID=user.userID).one()
        assert history.previousRank == "Private"
        assert history.newRank == "Corporal"
        assert history.qualificationMethod == "natural"
        assert "hashrateThs" in history.criteriaMet

        assert [data["userId"] for _, data in events] == [user.userID]

    @pytest.mark.asyncio
    async def test_evaluation_is_idempotent(self, session, network):
        await qualify_for_corporal(network, session)
        service = RankService(session)

        await service.evaluateAllRanks()
        results = await service.evaluateAllRanks()

        assert results["promoted"] == 0
        assert session.query(RankHistory).count() == 1

    @pytest.mark.asyncio
    async def test_higher_stored_rank_is_kept(self, session, network):
        user = await qualify_for_corporal(network, session)
        service = RankService(session)
        await service.assignRankByAdmin(user.userID, "Sergeant", ADMIN_ID)

        await service.evaluateAllRanks()

        assert user.rank == "Sergeant"


class TestAdminAssignment:
    """Manual rank changes."""

    @pytest.mark.asyncio
    async def test_admin_can_lower_rank(self, session, network, captured_events):
        events = captured_events(AffiliateEvents.RANK_ASSIGNED)
        user = await network.add(rank="General")

        result = await RankService(session).assignRankByAdmin(user.userID, "Private", ADMIN_ID, notes="audit")

        assert result["success"] is True
        assert user.rank == "Private"
        history = session.query(RankHistory).filter_by(userID=user.userID).one()
        assert history.qualificationMethod == "assigned"
        assert history.assignedBy == ADMIN_ID
        assert history.previousRank == "General"
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_non_admin_is_rejected(self, session, network):
        user = await network.add()

        with pytest.raises(ValidationError):
            await RankService(session).assignRankByAdmin(user.userID, "Major", 555)

        assert user.rank == "Private"

    @pytest.mark.asyncio
    async def test_unknown_rank_is_rejected(self, session, network):
        user = await network.add()

        with pytest.raises(ValidationError):
            await RankService(session).assignRankByAdmin(user.userID, "Admiral", ADMIN_ID)
