# models/mlm/rank_history.py
"""
RankHistory model - tracks rank achievements and changes.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from models.base import Base


class RankHistory(Base):
    __tablename__ = 'rank_history'

    historyID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relations
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)

    # Rank details
    previousRank = Column(String, nullable=True)
    newRank = Column(String, nullable=False)
    rankLevel = Column(Integer, nullable=False)

    # Qualification metrics at time of achievement
    criteriaMet = Column(JSON, nullable=True)
    qualificationMethod = Column(String, nullable=True)  # natural, assigned

    # If assigned by admin
    assignedBy = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    user = relationship('User', foreign_keys=[userID], backref='rankHistory')

    def __repr__(self):
        return f"<RankHistory(user={self.userID}, rank={self.newRank}, date={self.createdAt})>"
