"""Tests for engine settings and the admin settings table."""

import pytest
from decimal import Decimal

from models import CommissionSetting, CommissionSettingAudit
from affiliate_system.config.settings import EngineSettings, DEFAULT_SETTING_ROWS
from affiliate_system.errors import ConfigurationError, ValidationError
from affiliate_system.services.settings_service import SettingsService
from conftest import ADMIN_ID


@pytest.fixture
def settings_service(session):
    service = SettingsService(session)
    service.seedDefaults()
    return service


class TestEngineSettings:

    def test_defaults_are_valid(self):
        settings = EngineSettings().validate()

        assert settings.directRate(1) == Decimal("0.1")
        assert settings.overrideLevels == 5
        assert settings.binaryFraction == Decimal("0.1")

    @pytest.mark.parametrize("changes", [
        {"binaryRate": Decimal("150")},
        {"binaryRate": Decimal("0")},
        {"carryForwardMode": "keep"},
        {"leadershipPoolPercent": Decimal("4")},
        {"directTierRates": (Decimal("10"), Decimal("5"))},
    ])
    def test_invalid_settings(self, changes):
        with pytest.raises(ConfigurationError):
            EngineSettings(**changes).validate()

    def test_flat_values(self):
        settings = EngineSettings().withValues({
            "overrideLevels": Decimal("3"),
            "overrideLevel1Rate": Decimal("4"),
            "carryForwardRollover": Decimal("1"),
            "poolScalingEnabled": Decimal("0"),
            "ghostBvDurationDays": Decimal("14"),
        })

        assert settings.overrideLevelRates == (Decimal("4"), Decimal("1"), Decimal("1"))
        assert settings.carryForwardMode == "rollover"
        assert settings.poolScalingEnabled is False
        assert settings.ghostBvDurationDays == 14

    def test_unknown_flat_value(self):
        with pytest.raises(ConfigurationError):
            EngineSettings().withValues({"jackpotRate": Decimal("1")})


class TestSettingsService:

    def test_seed_is_idempotent(self, session, settings_service):
        assert session.query(CommissionSetting).count() == len(DEFAULT_SETTING_ROWS)
        assert settings_service.seedDefaults() == 0

    def test_seeded_values_match_defaults(self, settings_service):
        settings = settings_service.loadSettings()
        defaults = EngineSettings()

        assert settings.directTierRates == defaults.directTierRates
        assert settings.overrideLevelRates == defaults.overrideLevelRates
        assert settings.leadershipTierRates == defaults.leadershipTierRates
        assert settings.carryForwardMode == "forfeit"
        assert settings.poolScalingEnabled is True

    def test_load_without_rows_uses_defaults(self, session):
        assert SettingsService(session).loadSettings().binaryRate == Decimal("10")

    @pytest.mark.asyncio
    async def test_update_writes_audit(self, session, settings_service):
        result = await settings_service.updateSetting("binaryRate", "12", ADMIN_ID)

        change, = result["changes"]
        assert change["setting"] == "binaryRate"
        assert Decimal(change["old"]) == Decimal("10")
        assert settings_service.loadSettings().binaryRate == Decimal("12")
        audit = session.query(CommissionSettingAudit).one()
        assert audit.changedBy == ADMIN_ID
        assert audit.newValue == Decimal("12")

    @pytest.mark.asyncio
    async def test_out_of_range_is_rejected(self, session, settings_service):
        with pytest.raises(ValidationError):
            await settings_service.updateSetting("binaryRate", "75", ADMIN_ID)
        assert settings_service.loadSettings().binaryRate == Decimal("10")

    @pytest.mark.asyncio
    async def test_non_admin_is_rejected(self, settings_service):
        with pytest.raises(ValidationError):
            await settings_service.updateSetting("binaryRate", "12", 555)

    @pytest.mark.asyncio
    async def test_unknown_setting(self, settings_service):
        with pytest.raises(ValidationError):
            await settings_service.updateSetting("jackpotRate", "1", ADMIN_ID)

    @pytest.mark.asyncio
    async def test_tier_rates_must_match_pool(self, session, settings_service):
        with pytest.raises(ConfigurationError):
            await settings_service.updateSetting("leadershipTier1Rate", "2.0", ADMIN_ID)
        assert session.query(CommissionSettingAudit).count() == 0

        await settings_service.updateSettings(
            {"leadershipTier1Rate": "2.0", "leadershipPoolPercent": "3.5"}, ADMIN_ID
        )
        settings = settings_service.loadSettings()
        assert settings.leadershipPoolPercent == Decimal("3.5")
        assert settings.leadershipTierRates[1] == Decimal("2.0")
