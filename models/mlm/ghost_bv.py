# models/mlm/ghost_bv.py
"""
GhostBV model - time-boxed bonus volume granted on purchase.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from models.base import Base


class GhostBV(Base):
    __tablename__ = 'ghost_bv'

    grantID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    purchaseID = Column(Integer, ForeignKey('purchases.purchaseID'), nullable=False, unique=True)

    amount = Column(DECIMAL(12, 2), nullable=False)
    originalPackageValue = Column(DECIMAL(12, 2), nullable=False)
    payLeg = Column(String, nullable=False)  # fixed at grant time

    startDate = Column(Date, nullable=False, index=True)
    expiresAt = Column(Date, nullable=False, index=True)

    status = Column(String, default="active", index=True)  # active, expired
    expiredAt = Column(DateTime, nullable=True)

    user = relationship('User', backref='ghostGrants')

    def __repr__(self):
        return f"<GhostBV(user={self.userID}, amount={self.amount}, leg={self.payLeg}, status={self.status})>"
