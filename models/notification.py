from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey
from datetime import datetime, timezone
from models.base import Base


class Notification(Base):
    __tablename__ = 'notifications'

    notificationID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    source = Column(String, nullable=False)  # Событие, породившее уведомление
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    category = Column(String, nullable=True)  # commission, rank, settlement
    importance = Column(String, default='normal')
    text = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)

    status = Column(String, default='pending')  # pending, sent, failed
    sentAt = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Notification(user={self.userID}, source={self.source}, status={self.status})>"
