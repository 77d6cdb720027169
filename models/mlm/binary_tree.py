# models/mlm/binary_tree.py
"""
BinaryTree model - per-user volume aggregate of the binary tree.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey
from sqlalchemy.orm import relationship, backref
from datetime import datetime, timezone
from decimal import Decimal
from models.base import Base


class BinaryTree(Base):
    __tablename__ = 'binary_tree'

    treeID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, unique=True)

    # Children in the placement tree
    leftChildID = Column(Integer, nullable=True)
    rightChildID = Column(Integer, nullable=True)

    # Subtree volumes (qualifying volume + active Ghost BV)
    leftVolume = Column(DECIMAL(15, 2), nullable=False, default=0)
    rightVolume = Column(DECIMAL(15, 2), nullable=False, default=0)
    weakLeg = Column(String, nullable=False, default="left")

    totalLeftMembers = Column(Integer, nullable=False, default=0)
    totalRightMembers = Column(Integer, nullable=False, default=0)

    # Sales used by rank qualification
    personalSales = Column(DECIMAL(15, 2), nullable=False, default=0)
    teamSales = Column(DECIMAL(15, 2), nullable=False, default=0)

    # Weak-leg volume already paid out as binary commission
    binaryMatchedVolume = Column(DECIMAL(15, 2), nullable=False, default=0)

    # Aged volume written off per leg, never matched
    leftFlushedVolume = Column(DECIMAL(15, 2), nullable=False, default=0)
    rightFlushedVolume = Column(DECIMAL(15, 2), nullable=False, default=0)

    # Optimistic concurrency counter, bumped by every volume write
    version = Column(Integer, nullable=False, default=0)
    updatedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                       onupdate=lambda: datetime.now(timezone.utc))

    user = relationship('User', backref=backref('treeNode', uselist=False))

    def legVolume(self, leg: str) -> Decimal:
        value = self.leftVolume if leg == "left" else self.rightVolume
        return Decimal(str(value or 0))

    @property
    def weakLegVolume(self) -> Decimal:
        return min(self.legVolume("left"), self.legVolume("right"))

    @property
    def strongLegVolume(self) -> Decimal:
        return max(self.legVolume("left"), self.legVolume("right"))

    def consumedVolume(self, leg: str) -> Decimal:
        """Oldest part of a leg already matched or written off."""
        flushed = self.leftFlushedVolume if leg == "left" else self.rightFlushedVolume
        return Decimal(str(self.binaryMatchedVolume or 0)) + Decimal(str(flushed or 0))

    @property
    def binaryAvailableVolume(self) -> Decimal:
        """Volume that can still be matched on both legs."""
        available = min(
            self.legVolume("left") - self.consumedVolume("left"),
            self.legVolume("right") - self.consumedVolume("right"),
        )
        return max(available, Decimal("0"))

    def __repr__(self):
        return f"<BinaryTree(user={self.userID}, L={self.leftVolume}, R={self.rightVolume}, v={self.version})>"
