"""Tests for claiming finalized settlements."""

import pytest
from datetime import date
from decimal import Decimal

from models import WeeklySettlement, LedgerEntry, SettlementStatus
from affiliate_system.config.settings import EngineSettings
from affiliate_system.errors import ClaimError, ClaimErrorCode
from affiliate_system.events.event_bus import AffiliateEvents
from affiliate_system.services.claim_service import ClaimService
from affiliate_system.services.settlement_service import SettlementService
from conftest import WALLET, mark_expiry_sweep

WEEK = date(2025, 11, 3)


async def settle(session, network, amounts, finalize=True):
    settings = EngineSettings(poolScalingEnabled=False)
    users = [await network.add()]
    while len(users) < len(amounts):
        users.append(await network.add(sponsor=users[0]))
    for user, amount in zip(users, amounts):
        network.directCommission(user, amount, WEEK)

    mark_expiry_sweep(session)
    service = SettlementService(session, settings)
    await service.calculateWeek(WEEK)
    if finalize:
        await service.finalizeWeek(WEEK)

    return [service.getSettlement(user.userID, WEEK) for user in users]


async def claim_code(service, *args):
    with pytest.raises(ClaimError) as excinfo:
        await service.claimSettlement(*args)
    return excinfo.value.code


class TestClaim:

    @pytest.mark.asyncio
    async def test_successful_claim_writes_ledger(self, session, network, captured_events):
        events = captured_events(AffiliateEvents.SETTLEMENT_CLAIMED)
        first, _, _ = await settle(session, network, ["100", "200", "300"])

        result = await ClaimService(session).claimSettlement(
            first.settlementID, WALLET, first.merkleProof, transactionHash="0xfeed"
        )

        assert result["success"] is True
        assert result["grandTotal"] == Decimal("100")
        assert first.status == SettlementStatus.CLAIMED
        assert first.claimedAt is not None
        assert first.walletAddress == WALLET

        entry = session.query(LedgerEntry).one()
        assert entry.settlementID == first.settlementID
        assert entry.amount == Decimal("100")
        assert entry.transactionHash == "0xfeed"
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_second_claim_is_rejected(self, session, network):
        first, _ = await settle(session, network, ["100", "200"])
        service = ClaimService(session)
        await service.claimSettlement(first.settlementID, WALLET, first.merkleProof)

        code = await claim_code(service, first.settlementID, WALLET, first.merkleProof)

        assert code == ClaimErrorCode.ALREADY_CLAIMED
        assert session.query(LedgerEntry).count() == 1

    @pytest.mark.asyncio
    async def test_unknown_settlement(self, session):
        code = await claim_code(ClaimService(session), 999, WALLET, [])
        assert code == ClaimErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_unfinalized_settlement(self, session, network):
        first, _ = await settle(session, network, ["100", "200"], finalize=False)

        code = await claim_code(ClaimService(session), first.settlementID, WALLET, [])
        assert code == ClaimErrorCode.NOT_READY

    @pytest.mark.asyncio
    async def test_missing_proof(self, session, network):
        first, _ = await settle(session, network, ["100", "200"])

        code = await claim_code(ClaimService(session), first.settlementID, WALLET, None)
        assert code == ClaimErrorCode.MISSING_PROOF

    @pytest.mark.asyncio
    async def test_single_settlement_week_has_empty_proof(self, session, network):
        only, = await settle(session, network, ["250"])

        assert only.merkleProof == []
        result = await ClaimService(session).claimSettlement(only.settlementID, WALLET, [])
        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_invalid_wallet(self, session, network):
        first, _ = await settle(session, network, ["100", "200"])
        service = ClaimService(session)

        for wallet in ("", "0x1234", "not-a-wallet"):
            code = await claim_code(service, first.settlementID, wallet, first.merkleProof)
            assert code == ClaimErrorCode.INVALID_WALLET

    @pytest.mark.asyncio
    async def test_proof_of_another_user(self, session, network):
        first, second, third = await settle(session, network, ["100", "200", "300"])

        code = await claim_code(ClaimService(session), first.settlementID, WALLET, second.merkleProof)
        assert code == ClaimErrorCode.INVALID_PROOF

    @pytest.mark.asyncio
    async def test_tampered_amount_fails_verification(self, session, network):
        first, _, _ = await settle(session, network, ["100", "200", "300"])
        first.grandTotal = Decimal("101")
        session.commit()

        code = await claim_code(ClaimService(session), first.settlementID, WALLET, first.merkleProof)
        assert code == ClaimErrorCode.INVALID_PROOF
        assert session.query(WeeklySettlement).filter_by(status=SettlementStatus.CLAIMED).count() == 0

    @pytest.mark.asyncio
    async def test_changed_user_fails_verification(self, session, network):
        first, _, _ = await settle(session, network, ["100", "200", "300"])
        stranger = await network.add()
        first.userID = stranger.userID
        session.commit()

        code = await claim_code(ClaimService(session), first.settlementID, WALLET, first.merkleProof)
        assert code == ClaimErrorCode.INVALID_PROOF

    @pytest.mark.asyncio
    @pytest.mark.parametrize("proof", [[None], [42], ["0xzz"], "not-a-list"])
    async def test_malformed_proof_is_invalid(self, session, network, proof):
        first, _ = await settle(session, network, ["100", "200"])
        service = ClaimService(session)

        code = await claim_code(service, first.settlementID, WALLET, proof)
        result = await service.tryClaim(first.settlementID, WALLET, proof)

        assert code == ClaimErrorCode.INVALID_PROOF
        assert result["success"] is False
        assert result["error"] == "invalid_proof"

    @pytest.mark.asyncio
    async def test_try_claim_returns_error_code(self, session, network):
        first, _ = await settle(session, network, ["100", "200"])

        result = await ClaimService(session).tryClaim(first.settlementID, WALLET, None)

        assert result == {
            "success": False,
            "error": "missing_proof",
            "message": "Merkle proof is required",
        }


class TestConcurrentClaims:

    @pytest.mark.asyncio
    async def test_only_one_of_two_racing_claims_succeeds(self, session, session_factory, network):
        first, _ = await settle(session, network, ["100", "200"])
        proof = list(first.merkleProof)

        with session_factory() as sessionA, session_factory() as sessionB:
            # B reads the row before A commits, so its copy still says ready_to_claim
            staleCopy = sessionB.query(WeeklySettlement).filter_by(settlementID=first.settlementID).one()
            assert staleCopy.status == SettlementStatus.READY_TO_CLAIM

            await ClaimService(sessionA).claimSettlement(first.settlementID, WALLET, proof)
            code = await claim_code(ClaimService(sessionB), first.settlementID, WALLET, proof)

        assert code == ClaimErrorCode.ALREADY_CLAIMED
        assert session.query(LedgerEntry).count() == 1
