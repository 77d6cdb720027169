# models/mlm/failed_event.py
"""
FailedEvent model - admin review queue for events the engine refused.
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime
from datetime import datetime, timezone
from models.base import Base


class FailedEvent(Base):
    __tablename__ = 'failed_events'

    failureID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    source = Column(String, nullable=False)  # commission_service, ghost_bv_service, ...
    eventType = Column(String, nullable=False)  # purchase, ghost_grant, ghost_expiry, placement
    eventRef = Column(String, nullable=True)
    errorKind = Column(String, nullable=False)  # validation, invariant, concurrency
    reason = Column(Text, nullable=False)

    resolved = Column(Boolean, default=False, index=True)
    resolvedAt = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<FailedEvent({self.eventType}:{self.eventRef}, {self.errorKind})>"
