# models/mlm/commission.py
"""
Commission models - Direct, Binary and Override earnings ledger.

baseAmount is what was earned; scaledAmount is what is paid after pool
scaling and the weekly cap. Rows are never deleted or re-priced once the
week is finalized.
"""
from sqlalchemy import Column, Integer, String, Float, DECIMAL, Date, ForeignKey, UniqueConstraint
from sqlalchemy.orm import declared_attr
from decimal import Decimal
from models.base import Base, AuditMixin


class CommissionMixin(AuditMixin):
    commissionType = None

    @declared_attr
    def userID(cls):
        return Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)

    rate = Column(Float, nullable=False)  # 0.10 for 10%
    baseAmount = Column(DECIMAL(12, 2), nullable=False)
    scaledAmount = Column(DECIMAL(12, 2), nullable=False)
    scaleFactor = Column(Float, default=1.0)

    weekStart = Column(Date, nullable=False, index=True)
    status = Column(String, default="pending")  # pending, settled

    @property
    def base(self) -> Decimal:
        return Decimal(str(self.baseAmount or 0))

    @property
    def scaled(self) -> Decimal:
        return Decimal(str(self.scaledAmount or 0))


class DirectCommission(Base, CommissionMixin):
    __tablename__ = 'direct_commissions'
    __table_args__ = (
        UniqueConstraint('purchaseID', 'userID', 'tier', name='uq_direct_commission'),
    )
    commissionType = "direct"

    commissionID = Column(Integer, primary_key=True, autoincrement=True)
    purchaseID = Column(Integer, ForeignKey('purchases.purchaseID'), nullable=False, index=True)
    sourceUserID = Column(Integer, ForeignKey('users.userID'), nullable=False)
    tier = Column(Integer, nullable=False)  # 1, 2, 3

    def __repr__(self):
        return f"<DirectCommission(user={self.userID}, tier={self.tier}, amount={self.baseAmount})>"


class OverrideCommission(Base, CommissionMixin):
    __tablename__ = 'override_commissions'
    __table_args__ = (
        UniqueConstraint('purchaseID', 'userID', 'level', name='uq_override_commission'),
    )
    commissionType = "override"

    commissionID = Column(Integer, primary_key=True, autoincrement=True)
    purchaseID = Column(Integer, ForeignKey('purchases.purchaseID'), nullable=False, index=True)
    sourceUserID = Column(Integer, ForeignKey('users.userID'), nullable=False)
    level = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<OverrideCommission(user={self.userID}, level={self.level}, amount={self.baseAmount})>"


class BinaryCommission(Base, CommissionMixin):
    __tablename__ = 'binary_commissions'
    __table_args__ = (
        UniqueConstraint('userID', 'weekStart', name='uq_binary_commission_week'),
    )
    commissionType = "binary"

    commissionID = Column(Integer, primary_key=True, autoincrement=True)

    # Snapshot of the match
    weakLegVolume = Column(DECIMAL(15, 2), nullable=False)
    matchedBefore = Column(DECIMAL(15, 2), nullable=False)
    matchedVolume = Column(DECIMAL(15, 2), nullable=False)  # volume consumed this week
    capApplied = Column(DECIMAL(12, 2), nullable=True)

    def __repr__(self):
        return f"<BinaryCommission(user={self.userID}, week={self.weekStart}, amount={self.baseAmount})>"
