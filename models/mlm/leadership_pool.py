# models/mlm/leadership_pool.py
"""
Leadership pool models - weekly pool calculation and per-leader lines.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Date, DateTime, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class LeadershipPoolDistribution(Base, AuditMixin):
    __tablename__ = 'leadership_pool_distributions'

    distributionID = Column(Integer, primary_key=True, autoincrement=True)

    # Period
    weekStart = Column(Date, nullable=False, unique=True)
    weekEnd = Column(Date, nullable=False)

    # Pool calculation
    totalWeeklyVolume = Column(DECIMAL(15, 2), nullable=False)
    poolPercentage = Column(DECIMAL(5, 2), nullable=False)
    totalPoolAmount = Column(DECIMAL(12, 2), nullable=False)

    # Per tier: {"1": {"rate": "1.5", "pool": "...", "count": 2, "share": "..."}, ...}
    qualifiedLeaders = Column(JSON, nullable=True)
    undistributedAmount = Column(DECIMAL(12, 2), default=0)

    status = Column(String, default="calculated")  # calculated, distributed
    distributedAt = Column(DateTime, nullable=True)

    lines = relationship('LeadershipPoolShare', back_populates='distribution',
                         cascade='all, delete-orphan')

    def __repr__(self):
        return f"<LeadershipPoolDistribution(week={self.weekStart}, pool={self.totalPoolAmount})>"


class LeadershipPoolShare(Base):
    __tablename__ = 'leadership_pool_shares'
    __table_args__ = (
        UniqueConstraint('userID', 'weekStart', name='uq_leadership_share_week'),
    )

    shareID = Column(Integer, primary_key=True, autoincrement=True)
    distributionID = Column(Integer, ForeignKey('leadership_pool_distributions.distributionID'), nullable=False)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    weekStart = Column(Date, nullable=False, index=True)

    tier = Column(Integer, nullable=False)
    rankName = Column(String, nullable=False)
    amount = Column(DECIMAL(12, 2), nullable=False)

    distribution = relationship('LeadershipPoolDistribution', back_populates='lines')

    def __repr__(self):
        return f"<LeadershipPoolShare(user={self.userID}, tier={self.tier}, amount={self.amount})>"
