# affiliate_system/services/binary_tree_service.py
"""
Binary tree store: placement and per-node volume aggregates.

Every numeric change to a binary_tree row goes through _applyDelta, a
conditional UPDATE guarded by the row version.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
import logging

from models import User, BinaryTree, ReferralLink
from affiliate_system.config.ranks import LEGS
from affiliate_system.config.settings import EngineSettings
from affiliate_system.errors import (
    ValidationError, PlacementError, InvariantViolationError, ConcurrencyConflictError
)
from affiliate_system.utils.money import toDecimal, ZERO

logger = logging.getLogger(__name__)

VOLUME_COLUMNS = (
    "leftVolume", "rightVolume", "personalSales", "teamSales",
    "binaryMatchedVolume", "leftFlushedVolume", "rightFlushedVolume",
)
COUNTER_COLUMNS = ("totalLeftMembers", "totalRightMembers")


class BinaryTreeService:
    """Service for the binary placement tree and its volume aggregates."""

    def __init__(self, session: Session, settings: Optional[EngineSettings] = None):
        self.session = session
        self.settings = settings or EngineSettings()

    # region Reads

    def getNode(self, userId: int) -> BinaryTree:
        node = self.session.query(BinaryTree).filter_by(userID=userId).first()
        if not node:
            raise ValidationError(f"User {userId} is not placed in the binary tree")
        return node

    def refreshNode(self, userId: int) -> BinaryTree:
        """Reload a node, discarding stale identity-map values."""
        node = (
            self.session.query(BinaryTree)
            .populate_existing()
            .filter_by(userID=userId)
            .first()
        )
        if not node:
            raise ValidationError(f"User {userId} is not placed in the binary tree")
        return node

    def getWeakLeg(self, userId: int) -> str:
        row = self.session.query(
            BinaryTree.leftVolume, BinaryTree.rightVolume
        ).filter(BinaryTree.userID == userId).one_or_none()
        if row is None:
            raise ValidationError(f"User {userId} is not placed in the binary tree")

        return self._weakLeg(toDecimal(row[0]), toDecimal(row[1]))

    def _weakLeg(self, left: Decimal, right: Decimal) -> str:
        if left < right:
            return "left"
        if right < left:
            return "right"
        return self.settings.weakLegTieDefault

    def getUplineLinks(self, userId: int, maxLevel: Optional[int] = None) -> List[ReferralLink]:
        """Sponsor-chain ancestors of a user, nearest first."""
        query = self.session.query(ReferralLink).filter(ReferralLink.descendantID == userId)
        if maxLevel is not None:
            query = query.filter(ReferralLink.level <= maxLevel)
        return query.order_by(ReferralLink.level).all()

    def countDirectReferrals(self, userId: int) -> int:
        return self.session.query(ReferralLink).filter(
            ReferralLink.ancestorID == userId,
            ReferralLink.level == 1
        ).count()

    def placementPath(self, userId: int) -> Dict[int, str]:
        """Map of placement ancestor -> leg under which the user sits."""
        path = {}
        current = self.session.query(User).filter_by(userID=userId).first()
        seen = set()

        while current and current.parentID is not None:
            if current.userID in seen:
                raise InvariantViolationError(f"Placement cycle detected at user {current.userID}")
            seen.add(current.userID)

            path[current.parentID] = current.slot
            current = self.session.query(User).filter_by(userID=current.parentID).first()

        return path

    # endregion

    # region Placement

    async def placeUser(
            self,
            userId: int,
            sponsorId: Optional[int] = None,
            parentId: Optional[int] = None,
            slot: Optional[str] = None
    ) -> Dict:
        """
        Place a user in the binary tree and link them to the sponsor chain.

        Without an explicit parent the user goes to the bottom of the
        sponsor's default placement leg. Placement is permanent.
        """
        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            raise ValidationError(f"User {userId} not found")

        if self.session.query(BinaryTree).filter_by(userID=userId).first():
            raise PlacementError(f"User {userId} is already placed")

        if sponsorId is None and parentId is None:
            return self._placeRoot(user)

        if sponsorId is None:
            raise PlacementError(f"User {userId} needs a sponsor")
        if sponsorId == userId:
            raise PlacementError(f"User {userId} cannot sponsor themselves")
        if user.sponsorID is not None and user.sponsorID != sponsorId:
            raise PlacementError(f"User {userId} already has sponsor {user.sponsorID}")

        sponsor = self.session.query(User).filter_by(userID=sponsorId).first()
        if not sponsor:
            raise ValidationError(f"Sponsor {sponsorId} not found")
        self.getNode(sponsorId)

        if parentId is None:
            leg = sponsor.defaultPlacementLeg or self.settings.weakLegTieDefault
            parentId, slot = self._findExtremeSlot(sponsorId, leg)
        else:
            if slot not in LEGS:
                raise PlacementError(f"Invalid slot {slot!r}")
            self.getNode(parentId)

        self._claimSlot(parentId, slot, userId)

        user.sponsorID = sponsorId
        user.parentID = parentId
        user.slot = slot
        self.session.add(BinaryTree(userID=userId, weakLeg=self.settings.weakLegTieDefault))
        self.session.flush()

        path = self.placementPath(userId)
        for ancestorId, leg in path.items():
            column = "totalLeftMembers" if leg == "left" else "totalRightMembers"
            self._applyDelta(ancestorId, {column: 1})

        links = self._linkSponsorChain(user, sponsor, path)
        self.session.commit()

        logger.info(
            f"User {userId} placed under {parentId} ({slot}), sponsor {sponsorId}, "
            f"{len(links)} upline links"
        )

        return {
            "success": True,
            "userId": userId,
            "parentId": parentId,
            "slot": slot,
            "sponsorId": sponsorId,
            "uplineLevels": len(links),
        }

    def _placeRoot(self, user: User) -> Dict:
        if self.session.query(BinaryTree).count() > 0:
            raise PlacementError("Binary tree already has a root")

        user.parentID = None
        user.slot = None
        self.session.add(BinaryTree(userID=user.userID, weakLeg=self.settings.weakLegTieDefault))
        self.session.commit()

        logger.info(f"User {user.userID} placed as tree root")
        return {"success": True, "userId": user.userID, "parentId": None, "slot": None, "sponsorId": None,
                "uplineLevels": 0}

    def _findExtremeSlot(self, startId: int, leg: str):
        """Walk down one leg until a free slot is found."""
        column = BinaryTree.leftChildID if leg == "left" else BinaryTree.rightChildID
        currentId = startId

        while True:
            childId = self.session.query(column).filter(BinaryTree.userID == currentId).scalar()
            if childId is None:
                return currentId, leg
            currentId = childId

    def _claimSlot(self, parentId: int, slot: str, childId: int):
        column = BinaryTree.leftChildID if slot == "left" else BinaryTree.rightChildID
        updated = (
            self.session.query(BinaryTree)
            .filter(BinaryTree.userID == parentId, column.is_(None))
            .update({column: childId, BinaryTree.version: BinaryTree.version + 1},
                    synchronize_session=False)
        )
        if updated != 1:
            raise PlacementError(f"Slot {slot} of user {parentId} is already occupied")

    def _linkSponsorChain(self, user: User, sponsor: User, path: Dict[int, str]) -> List[ReferralLink]:
        """
        Closure rows for every sponsor ancestor. The leg is where the new
        user sits in that ancestor's placement subtree; outside it the
        direct sponsor falls back to its default leg and higher ancestors
        inherit the leg that leads to the sponsor.
        """
        sponsorLeg = path.get(sponsor.userID) or sponsor.defaultPlacementLeg or self.settings.weakLegTieDefault
        links = [ReferralLink(ancestorID=sponsor.userID, descendantID=user.userID, level=1, leg=sponsorLeg)]

        for upper in self.getUplineLinks(sponsor.userID):
            links.append(ReferralLink(
                ancestorID=upper.ancestorID,
                descendantID=user.userID,
                level=upper.level + 1,
                leg=path.get(upper.ancestorID) or upper.leg,
            ))

        self.session.add_all(links)
        return links

    # endregion

    # region Volume

    async def addVolume(self, userId: int, leg: str, amount) -> BinaryTree:
        """Add volume to one leg of a single node (no propagation)."""
        amount = self._checkAmount(leg, amount)
        return self._applyDelta(userId, {f"{leg}Volume": amount})

    async def removeVolume(self, userId: int, leg: str, amount) -> BinaryTree:
        """Exact inverse of addVolume. Refuses to go below zero."""
        amount = self._checkAmount(leg, amount)
        return self._applyDelta(userId, {f"{leg}Volume": -amount})

    def _checkAmount(self, leg: str, amount) -> Decimal:
        if leg not in LEGS:
            raise ValidationError(f"Invalid leg {leg!r}")
        amount = toDecimal(amount)
        if amount <= 0:
            raise ValidationError(f"Volume amount must be positive, got {amount}")
        return amount

    def _readState(self, userId: int) -> Dict:
        columns = [getattr(BinaryTree, name) for name in VOLUME_COLUMNS + COUNTER_COLUMNS]
        row = self.session.query(BinaryTree.version, *columns).filter(
            BinaryTree.userID == userId
        ).one_or_none()
        if row is None:
            raise ValidationError(f"User {userId} is not placed in the binary tree")

        state = {"version": row[0]}
        for name, value in zip(VOLUME_COLUMNS + COUNTER_COLUMNS, row[1:]):
            state[name] = int(value or 0) if name in COUNTER_COLUMNS else toDecimal(value)
        return state

    def _conditionalUpdate(self, userId: int, version: int, values: Dict) -> int:
        return (
            self.session.query(BinaryTree)
            .filter(BinaryTree.userID == userId, BinaryTree.version == version)
            .update(values, synchronize_session=False)
        )

    def _applyDelta(self, userId: int, deltas: Dict) -> BinaryTree:
        """
        Apply deltas to a node with an optimistic version check.
        Negative results raise InvariantViolationError and nothing is written.
        """
        for attempt in range(1, self.settings.volumeUpdateRetries + 1):
            state = self._readState(userId)

            values = {}
            for name, delta in deltas.items():
                newValue = state[name] + delta
                if newValue < 0:
                    logger.error(
                        f"Invariant violation: {name} of user {userId} would become {newValue} "
                        f"({state[name]} + {delta})"
                    )
                    raise InvariantViolationError(
                        f"{name} of user {userId} would become negative ({state[name]} + {delta})"
                    )
                values[name] = newValue

            left = values.get("leftVolume", state["leftVolume"])
            right = values.get("rightVolume", state["rightVolume"])
            values["weakLeg"] = self._weakLeg(left, right)
            values["version"] = state["version"] + 1

            if self._conditionalUpdate(userId, state["version"], values) == 1:
                return self.refreshNode(userId)

            logger.warning(f"Version conflict on tree node {userId}, attempt {attempt}")

        raise ConcurrencyConflictError(
            f"Tree node {userId} kept changing after {self.settings.volumeUpdateRetries} attempts"
        )

    # endregion

    async def getLegSummary(self, userId: int) -> Dict:
        node = self.refreshNode(userId)
        return {
            "userId": userId,
            "leftVolume": node.legVolume("left"),
            "rightVolume": node.legVolume("right"),
            "weakLeg": node.weakLeg,
            "weakLegVolume": node.weakLegVolume,
            "strongLegVolume": node.strongLegVolume,
            "totalLeftMembers": node.totalLeftMembers or 0,
            "totalRightMembers": node.totalRightMembers or 0,
            "binaryMatchedVolume": toDecimal(node.binaryMatchedVolume),
            "leftFlushedVolume": toDecimal(node.leftFlushedVolume),
            "rightFlushedVolume": toDecimal(node.rightFlushedVolume),
            "unmatchedWeakVolume": node.binaryAvailableVolume,
        }
