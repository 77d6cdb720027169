# models/user.py
"""
User model - a node of the affiliate network.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime
from datetime import datetime, timezone
from decimal import Decimal
from models.base import Base


class User(Base):
    __tablename__ = 'users'

    # Primary identification
    userID = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=True, unique=True)
    walletAddress = Column(String, nullable=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Sponsor lineage (who gets Direct / Override credit)
    sponsorID = Column(Integer, nullable=True, index=True)

    # Binary placement, set once at signup
    parentID = Column(Integer, nullable=True, index=True)
    slot = Column(String, nullable=True)  # left, right; NULL only for the root
    defaultPlacementLeg = Column(String, default="left")

    # Rank (sticky, raised by evaluation or set by admin)
    rank = Column(String, default="Private", index=True)
    rankLevel = Column(Integer, default=1)

    # Mining capacity owned, TH/s
    hashrateThs = Column(DECIMAL(12, 2), default=0)

    status = Column(String, default="active")  # active, blocked

    @property
    def hashrate(self) -> Decimal:
        return Decimal(str(self.hashrateThs or 0))

    def __repr__(self):
        return f"<User(userID={self.userID}, sponsor={self.sponsorID}, rank={self.rank})>"
