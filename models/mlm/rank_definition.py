# models/mlm/rank_definition.py
"""
RankDefinition model - admin-editable rank ladder.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime
from datetime import datetime, timezone
from decimal import Decimal
from models.base import Base


class RankDefinition(Base):
    __tablename__ = 'rank_definitions'

    rankID = Column(Integer, primary_key=True, autoincrement=True)
    rankName = Column(String, nullable=False, unique=True)
    rankLevel = Column(Integer, nullable=False, unique=True)

    # Qualification thresholds - all must be met
    minPersonalSales = Column(DECIMAL(15, 2), nullable=False, default=0)
    minTeamSales = Column(DECIMAL(15, 2), nullable=False, default=0)
    minLeftLegVolume = Column(DECIMAL(15, 2), nullable=False, default=0)
    minRightLegVolume = Column(DECIMAL(15, 2), nullable=False, default=0)
    minHashrateThs = Column(DECIMAL(12, 2), nullable=False, default=0)
    minDirectReferrals = Column(Integer, nullable=False, default=0)

    # Earning limits
    weeklyCap = Column(DECIMAL(12, 2), nullable=False)
    binaryCap = Column(DECIMAL(12, 2), nullable=False)

    updatedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                       onupdate=lambda: datetime.now(timezone.utc))

    @property
    def weeklyCapAmount(self) -> Decimal:
        return Decimal(str(self.weeklyCap))

    @property
    def binaryCapAmount(self) -> Decimal:
        return Decimal(str(self.binaryCap))

    def __repr__(self):
        return f"<RankDefinition(level={self.rankLevel}, name={self.rankName}, cap={self.weeklyCap})>"
