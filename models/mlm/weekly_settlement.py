# models/mlm/weekly_settlement.py
"""
WeeklySettlement model - per-user weekly payout, capped and claimable.
"""
from sqlalchemy import Column, Integer, String, Float, DECIMAL, Date, DateTime, Boolean, JSON, ForeignKey, \
    UniqueConstraint
from sqlalchemy.orm import relationship
from decimal import Decimal
from models.base import Base, AuditMixin


class SettlementStatus:
    IN_PROGRESS = "in_progress"
    READY_TO_CLAIM = "ready_to_claim"
    CLAIMED = "claimed"


class WeeklySettlement(Base, AuditMixin):
    __tablename__ = 'weekly_settlements'
    __table_args__ = (
        UniqueConstraint('userID', 'weekStart', name='uq_settlement_user_week'),
    )

    settlementID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)

    # Period
    weekStart = Column(Date, nullable=False, index=True)
    weekEnd = Column(Date, nullable=False)

    # Breakdown (scaled amounts)
    directL1 = Column(DECIMAL(12, 2), default=0)
    directL2 = Column(DECIMAL(12, 2), default=0)
    directL3 = Column(DECIMAL(12, 2), default=0)
    directTotal = Column(DECIMAL(12, 2), default=0)
    binaryTotal = Column(DECIMAL(12, 2), default=0)
    overrideTotal = Column(DECIMAL(12, 2), default=0)
    leadershipTotal = Column(DECIMAL(12, 2), default=0)
    carryIn = Column(DECIMAL(12, 2), default=0)

    # Leg snapshot
    weakLegVolume = Column(DECIMAL(15, 2), default=0)
    strongLegVolume = Column(DECIMAL(15, 2), default=0)

    # Cap
    rawTotal = Column(DECIMAL(12, 2), default=0)
    weeklyCap = Column(DECIMAL(12, 2), nullable=False)
    carryForward = Column(DECIMAL(12, 2), default=0)
    grandTotal = Column(DECIMAL(12, 2), default=0)
    scaleFactorApplied = Column(Float, default=1.0)

    # Merkle commitment
    merkleRoot = Column(String, nullable=True)
    merkleLeaf = Column(String, nullable=True)
    merkleProof = Column(JSON, nullable=True)
    isFinalized = Column(Boolean, default=False, nullable=False)
    capViolation = Column(Boolean, default=False, nullable=False)  # set by the hard cap audit

    # Claim
    status = Column(String, default=SettlementStatus.IN_PROGRESS, index=True)
    walletAddress = Column(String, nullable=True)
    transactionHash = Column(String, nullable=True)
    claimedAt = Column(DateTime, nullable=True)

    user = relationship('User', backref='settlements')

    @property
    def grandTotalAmount(self) -> Decimal:
        return Decimal(str(self.grandTotal or 0))

    @property
    def carryForwardAmount(self) -> Decimal:
        return Decimal(str(self.carryForward or 0))

    def __repr__(self):
        return f"<WeeklySettlement(user={self.userID}, week={self.weekStart}, total={self.grandTotal}, {self.status})>"


class SettlementMeta(Base, AuditMixin):
    """Platform-wide commitment for one week."""
    __tablename__ = 'weekly_settlements_meta'

    metaID = Column(Integer, primary_key=True, autoincrement=True)
    weekStart = Column(Date, nullable=False, unique=True)
    merkleRoot = Column(String, nullable=False)
    totalUsers = Column(Integer, nullable=False, default=0)
    totalAmount = Column(DECIMAL(15, 2), nullable=False, default=0)
    salesVolume = Column(DECIMAL(15, 2), nullable=False, default=0)
    contractStatus = Column(String, default="pending")  # pending, published

    def __repr__(self):
        return f"<SettlementMeta(week={self.weekStart}, root={self.merkleRoot[:10]}, users={self.totalUsers})>"
