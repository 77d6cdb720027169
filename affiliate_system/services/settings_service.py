# affiliate_system/services/settings_service.py
"""
Admin-editable commission settings.
"""
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

import config
from models import CommissionSetting, CommissionSettingAudit
from affiliate_system.config.settings import EngineSettings, DEFAULT_SETTING_ROWS
from affiliate_system.errors import ValidationError, ConfigurationError

logger = logging.getLogger(__name__)


class SettingsService:
    """Loads typed settings from the commission_settings table."""

    def __init__(self, session: Session, defaults: Optional[EngineSettings] = None):
        self.session = session
        self.defaults = defaults or EngineSettings()

    def seedDefaults(self) -> int:
        """Insert missing setting rows. Existing values are left alone."""
        existing = {row.settingName for row in self.session.query(CommissionSetting.settingName).all()}
        created = 0

        for name, value, minValue, maxValue, description in DEFAULT_SETTING_ROWS:
            if name in existing:
                continue
            self.session.add(CommissionSetting(
                settingName=name,
                settingValue=Decimal(value),
                minValue=Decimal(minValue),
                maxValue=Decimal(maxValue),
                description=description,
            ))
            created += 1

        self.session.commit()
        if created:
            logger.info(f"Seeded {created} commission settings")
        return created

    def _storedValues(self) -> Dict[str, Decimal]:
        return {
            row.settingName: Decimal(str(row.settingValue))
            for row in self.session.query(CommissionSetting).all()
        }

    def loadSettings(self) -> EngineSettings:
        """
        Build the settings snapshot for one batch run.
        Raises ConfigurationError before any record is touched.
        """
        settings = self.defaults.withValues(self._storedValues()).validate()
        logger.debug(f"Engine settings loaded: {settings}")
        return settings

    async def updateSetting(self, name: str, value, adminId: int) -> Dict:
        return await self.updateSettings({name: value}, adminId)

    async def updateSettings(self, values: Dict[str, object], adminId: int) -> Dict:
        """
        Change several settings at once (e.g. leadership tier rates that
        must keep adding up to the pool percent).
        """
        if config.ADMINS and adminId not in config.ADMINS:
            raise ValidationError(f"User {adminId} is not allowed to change settings")

        rows = {}
        for name, value in values.items():
            row = self.session.query(CommissionSetting).filter_by(settingName=name).first()
            if not row:
                raise ValidationError(f"Unknown setting {name!r}")

            newValue = Decimal(str(value))
            if newValue < Decimal(str(row.minValue)) or newValue > Decimal(str(row.maxValue)):
                raise ValidationError(
                    f"{name}={newValue} is outside [{row.minValue}, {row.maxValue}]"
                )
            rows[name] = (row, newValue)

        candidate = self._storedValues()
        candidate.update({name: newValue for name, (row, newValue) in rows.items()})
        try:
            self.defaults.withValues(candidate).validate()
        except ConfigurationError:
            self.session.rollback()
            raise

        changes = []
        for name, (row, newValue) in rows.items():
            oldValue = Decimal(str(row.settingValue))
            row.settingValue = newValue
            row.updatedBy = adminId
            self.session.add(CommissionSettingAudit(
                settingID=row.settingID,
                settingName=name,
                oldValue=oldValue,
                newValue=newValue,
                changedBy=adminId,
            ))
            changes.append({"setting": name, "old": str(oldValue), "new": str(newValue)})

        self.session.commit()

        for change in changes:
            logger.info(f"Setting {change['setting']} changed {change['old']} -> {change['new']} by admin {adminId}")

        return {"success": True, "changes": changes}
