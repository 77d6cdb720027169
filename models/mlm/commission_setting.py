# models/mlm/commission_setting.py
"""
Commission settings - admin-editable engine parameters with audit trail.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, Text, ForeignKey
from datetime import datetime, timezone
from models.base import Base, AuditMixin


class CommissionSetting(Base, AuditMixin):
    __tablename__ = 'commission_settings'

    settingID = Column(Integer, primary_key=True, autoincrement=True)
    settingName = Column(String, nullable=False, unique=True)
    settingValue = Column(DECIMAL(15, 4), nullable=False)
    minValue = Column(DECIMAL(15, 4), nullable=False)
    maxValue = Column(DECIMAL(15, 4), nullable=False)
    description = Column(Text, nullable=True)
    updatedBy = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<CommissionSetting({self.settingName}={self.settingValue})>"


class CommissionSettingAudit(Base):
    __tablename__ = 'commission_settings_audit'

    auditID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    settingID = Column(Integer, ForeignKey('commission_settings.settingID'), nullable=False)
    settingName = Column(String, nullable=False)
    oldValue = Column(DECIMAL(15, 4), nullable=True)
    newValue = Column(DECIMAL(15, 4), nullable=False)
    changedBy = Column(Integer, nullable=True)
