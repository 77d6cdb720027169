# models/purchase.py
from sqlalchemy import Column, Integer, String, DECIMAL, Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from models.base import Base, AuditMixin


class Purchase(Base, AuditMixin):
    """Qualifying volume event: a completed package purchase."""
    __tablename__ = 'purchases'

    # Primary key
    purchaseID = Column(Integer, primary_key=True, autoincrement=True)

    # Foreign keys
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    packageID = Column(Integer, ForeignKey('packages.packageID'), nullable=True)

    # Event payload
    amountUsd = Column(DECIMAL(12, 2), nullable=False)
    packageBvPercent = Column(DECIMAL(5, 2), nullable=True)
    hashrateThs = Column(DECIMAL(12, 2), default=0)
    status = Column(String, default="COMPLETED", index=True)  # PENDING, COMPLETED, FAILED, REFUNDED
    completedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Processing flags - at-most-once guards for the batch steps
    ghostProcessedAt = Column(DateTime, nullable=True)
    commissionProcessedAt = Column(DateTime, nullable=True)
    bookedWeekStart = Column(Date, nullable=True, index=True)  # week whose sales volume includes it
    volumeFlushedAt = Column(DateTime, nullable=True)  # aged out of binary matching
    processingError = Column(String, nullable=True)

    # Relationships
    user = relationship('User', backref='purchases')
    package = relationship('Package', back_populates='purchases')

    def __repr__(self):
        return f"<Purchase(purchaseID={self.purchaseID}, user={self.userID}, amount={self.amountUsd})>"
