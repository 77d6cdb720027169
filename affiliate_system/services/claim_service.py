# affiliate_system/services/claim_service.py
"""
Settlement claim: in_progress -> ready_to_claim -> claimed, exactly once.
"""
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
import logging

from eth_utils import is_address

import config
from models import WeeklySettlement, SettlementMeta, SettlementStatus, LedgerEntry
from affiliate_system.errors import ClaimError, ClaimErrorCode
from affiliate_system.events.event_bus import eventBus, AffiliateEvents
from affiliate_system.utils.merkle import encodeLeaf, verifyProof
from affiliate_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class ClaimService:

    def __init__(self, session: Session):
        self.session = session

    async def claimSettlement(
            self,
            settlementId: int,
            walletAddress: str,
            merkleProof: Optional[List[str]],
            transactionHash: Optional[str] = None
    ) -> Dict:
        """
        Verify the proof against the published weekly root and mark the
        settlement claimed. Raises ClaimError with a distinct code.
        """
        settlement = self.session.query(WeeklySettlement).filter_by(settlementID=settlementId).first()

        if not settlement:
            raise ClaimError(ClaimErrorCode.NOT_FOUND)
        if settlement.status == SettlementStatus.CLAIMED:
            raise ClaimError(ClaimErrorCode.ALREADY_CLAIMED)
        if settlement.status != SettlementStatus.READY_TO_CLAIM or not settlement.isFinalized:
            raise ClaimError(ClaimErrorCode.NOT_READY)
        if merkleProof is None:
            raise ClaimError(ClaimErrorCode.MISSING_PROOF)
        if not walletAddress or not is_address(walletAddress):
            raise ClaimError(ClaimErrorCode.INVALID_WALLET)

        meta = self.session.query(SettlementMeta).filter_by(weekStart=settlement.weekStart).first()
        if not meta:
            raise ClaimError(ClaimErrorCode.NOT_READY)

        leaf = encodeLeaf(
            settlement.userID, settlement.weekStart, settlement.grandTotalAmount, config.PAYOUT_TOKEN_DECIMALS
        )
        if not verifyProof(merkleProof, meta.merkleRoot, leaf):
            logger.warning(f"Invalid proof for settlement {settlementId} (user {settlement.userID})")
            raise ClaimError(ClaimErrorCode.INVALID_PROOF)

        claimedAt = timeMachine.now
        updated = (
            self.session.query(WeeklySettlement)
            .filter(
                WeeklySettlement.settlementID == settlementId,
                WeeklySettlement.status == SettlementStatus.READY_TO_CLAIM
            )
            .update({
                "status": SettlementStatus.CLAIMED,
                "claimedAt": claimedAt,
                "walletAddress": walletAddress,
                "transactionHash": transactionHash,
            }, synchronize_session=False)
        )
        if updated != 1:
            self.session.rollback()
            logger.warning(f"Settlement {settlementId} was claimed concurrently")
            raise ClaimError(ClaimErrorCode.ALREADY_CLAIMED)

        entry = LedgerEntry(
            userID=settlement.userID,
            settlementID=settlementId,
            entryType="settlement_claim",
            amount=settlement.grandTotalAmount,
            weekStart=settlement.weekStart,
            walletAddress=walletAddress,
            transactionHash=transactionHash,
        )
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(settlement)

        logger.info(
            f"Settlement {settlementId} claimed by user {settlement.userID}: "
            f"{settlement.grandTotal} to {walletAddress}"
        )

        data = {
            "userId": settlement.userID,
            "settlementId": settlementId,
            "weekStart": settlement.weekStart,
            "grandTotal": settlement.grandTotalAmount,
            "walletAddress": walletAddress,
            "transactionHash": transactionHash,
        }
        await eventBus.emit(AffiliateEvents.SETTLEMENT_CLAIMED, data)

        return {"success": True, "claimedAt": claimedAt, "ledgerEntryId": entry.entryID, **data}

    async def tryClaim(self, settlementId: int, walletAddress: str, merkleProof, transactionHash=None) -> Dict:
        """Result-dict form for callers that render the error to the user."""
        try:
            return await self.claimSettlement(settlementId, walletAddress, merkleProof, transactionHash)
        except ClaimError as e:
            return {"success": False, "error": e.code.value, "message": str(e)}
