# models/mlm/referral_link.py
"""
ReferralLink model - sponsor-chain closure table.

One row per (ancestor, descendant) pair along the sponsor chain, with the
leg of the ancestor that receives the descendant's volume.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime, timezone
from models.base import Base


class ReferralLink(Base):
    __tablename__ = 'referral_links'
    __table_args__ = (
        UniqueConstraint('ancestorID', 'descendantID', name='uq_referral_link'),
    )

    linkID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    ancestorID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    descendantID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    level = Column(Integer, nullable=False)  # 1 = direct sponsor
    leg = Column(String, nullable=False)  # left, right

    def __repr__(self):
        return f"<ReferralLink({self.ancestorID} <- {self.descendantID}, L{self.level}, {self.leg})>"
