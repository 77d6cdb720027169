# models/mlm/ledger_entry.py
"""
LedgerEntry model - immutable money movements (settlement claims).
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Date, DateTime, ForeignKey
from datetime import datetime, timezone
from models.base import Base


class LedgerEntry(Base):
    __tablename__ = 'transaction_ledger'

    entryID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    settlementID = Column(Integer, ForeignKey('weekly_settlements.settlementID'), nullable=True, unique=True)
    entryType = Column(String, nullable=False)  # settlement_claim
    amount = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String, default="USDT")
    weekStart = Column(Date, nullable=True)

    walletAddress = Column(String, nullable=True)
    transactionHash = Column(String, nullable=True)

    def __repr__(self):
        return f"<LedgerEntry(user={self.userID}, type={self.entryType}, amount={self.amount})>"
