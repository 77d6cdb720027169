# affiliate_system/config/settings.py
"""
Typed engine settings.

Loaded once per batch run (see SettingsService.loadSettings) and validated
before any record is touched. All rates are percentages (10 means 10%).
"""
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Dict, Tuple

from affiliate_system.errors import ConfigurationError

CARRY_FORWARD_MODES = ("forfeit", "rollover")

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class EngineSettings:
    # Direct commission, tiers 1..3 of the sponsor chain
    directTierRates: Tuple[Decimal, ...] = (Decimal("10"), Decimal("5"), Decimal("2"))

    # Override commission, levels 1..N of the sponsor chain
    overrideLevelRates: Tuple[Decimal, ...] = (
        Decimal("2"), Decimal("1"), Decimal("1"), Decimal("0.5"), Decimal("0.5"),
    )

    # Binary commission on matched weak-leg volume
    binaryRate: Decimal = Decimal("10")

    # Ghost BV
    ghostBvPercent: Decimal = Decimal("80")
    ghostBvDurationDays: int = 10
    ghostBvWeeklyCap: Decimal = Decimal("20000")

    # Leadership pool: tier -> share of weekly volume
    leadershipPoolPercent: Decimal = Decimal("3")
    leadershipTierRates: Dict[int, Decimal] = field(default_factory=lambda: {
        1: Decimal("1.5"),
        2: Decimal("1.0"),
        3: Decimal("0.5"),
    })

    # Payout pools as share of weekly sales volume
    poolScalingEnabled: bool = True
    directPoolPercent: Decimal = Decimal("20")
    binaryPoolPercent: Decimal = Decimal("17")
    overridePoolPercent: Decimal = Decimal("3")
    globalCapPercent: Decimal = Decimal("40")

    # Direct tiers 2 and 3 need a package of at least this price (when enabled)
    directTierUnlockEnabled: bool = False
    directTier2UnlockUsd: Decimal = Decimal("500")
    directTier3UnlockUsd: Decimal = Decimal("1000")

    # Purchase volume older than this stops counting for binary matching
    volumeFlushDays: int = 180

    # Absolute weekly payout ceiling per user, on top of the rank cap
    settlementHardCap: Decimal = Decimal("40000")

    carryForwardMode: str = "forfeit"
    weakLegTieDefault: str = "left"
    volumeUpdateRetries: int = 3

    @property
    def overrideLevels(self) -> int:
        return len(self.overrideLevelRates)

    def directRate(self, tier: int) -> Decimal:
        """Fraction paid at the given direct tier (1-based)."""
        return self.directTierRates[tier - 1] / HUNDRED

    def overrideRate(self, level: int) -> Decimal:
        return self.overrideLevelRates[level - 1] / HUNDRED

    @property
    def binaryFraction(self) -> Decimal:
        return self.binaryRate / HUNDRED

    def validate(self) -> "EngineSettings":
        percents = {
            "binaryRate": self.binaryRate,
            "ghostBvPercent": self.ghostBvPercent,
            "leadershipPoolPercent": self.leadershipPoolPercent,
            "directPoolPercent": self.directPoolPercent,
            "binaryPoolPercent": self.binaryPoolPercent,
            "overridePoolPercent": self.overridePoolPercent,
            "globalCapPercent": self.globalCapPercent,
        }
        for index, rate in enumerate(self.directTierRates, start=1):
            percents[f"directTier{index}Rate"] = rate
        for index, rate in enumerate(self.overrideLevelRates, start=1):
            percents[f"overrideLevel{index}Rate"] = rate
        for tier, rate in self.leadershipTierRates.items():
            percents[f"leadershipTier{tier}Rate"] = rate

        for name, value in percents.items():
            if value < 0 or value > HUNDRED:
                raise ConfigurationError(f"{name}={value} is outside [0, 100]")

        if len(self.directTierRates) != 3:
            raise ConfigurationError("Direct commission needs exactly 3 tier rates")
        if self.overrideLevels < 1:
            raise ConfigurationError("Override commission needs at least one level")
        if self.binaryRate <= 0:
            raise ConfigurationError("binaryRate must be positive")
        if self.ghostBvDurationDays <= 0:
            raise ConfigurationError("ghostBvDurationDays must be positive")
        if self.volumeFlushDays <= 0:
            raise ConfigurationError("volumeFlushDays must be positive")
        if self.settlementHardCap <= 0:
            raise ConfigurationError("settlementHardCap must be positive")
        if self.directTier3UnlockUsd < self.directTier2UnlockUsd:
            raise ConfigurationError("directTier3UnlockUsd must not be below directTier2UnlockUsd")
        if self.volumeUpdateRetries <= 0:
            raise ConfigurationError("volumeUpdateRetries must be positive")
        if self.ghostBvWeeklyCap < 0:
            raise ConfigurationError("ghostBvWeeklyCap must not be negative")
        if sum(self.leadershipTierRates.values(), Decimal("0")) != self.leadershipPoolPercent:
            raise ConfigurationError(
                f"Leadership tier rates must add up to {self.leadershipPoolPercent}%"
            )
        if self.carryForwardMode not in CARRY_FORWARD_MODES:
            raise ConfigurationError(f"Unknown carryForwardMode {self.carryForwardMode!r}")
        if self.weakLegTieDefault not in ("left", "right"):
            raise ConfigurationError(f"Unknown weakLegTieDefault {self.weakLegTieDefault!r}")
        return self

    def withValues(self, values: Dict[str, Decimal]) -> "EngineSettings":
        """Return a copy with flat commission_settings values applied."""
        changes = {}
        direct = list(self.directTierRates)
        override = list(self.overrideLevelRates)
        tiers = dict(self.leadershipTierRates)

        values = dict(values)
        levels = values.pop("overrideLevels", None)

        for name, value in values.items():
            value = Decimal(str(value))
            if name.startswith("directTier") and name.endswith("Rate"):
                direct[int(name[len("directTier"):-len("Rate")]) - 1] = value
            elif name.startswith("overrideLevel") and name.endswith("Rate"):
                index = int(name[len("overrideLevel"):-len("Rate")])
                while len(override) < index:
                    override.append(override[-1])
                override[index - 1] = value
            elif name.startswith("leadershipTier") and name.endswith("Rate"):
                tiers[int(name[len("leadershipTier"):-len("Rate")])] = value
            elif name in ("ghostBvDurationDays", "volumeUpdateRetries", "volumeFlushDays"):
                changes[name] = int(value)
            elif name in ("poolScalingEnabled", "directTierUnlockEnabled"):
                changes[name] = value != 0
            elif name == "carryForwardRollover":
                changes["carryForwardMode"] = "rollover" if value != 0 else "forfeit"
            elif name in NUMERIC_FIELDS:
                changes[name] = value
            else:
                raise ConfigurationError(f"Unknown setting {name!r}")

        if levels is not None:
            levels = int(levels)
            if levels < 1:
                raise ConfigurationError("overrideLevels must be at least 1")
            override = (override + [override[-1]] * levels)[:levels]

        return replace(
            self,
            directTierRates=tuple(direct),
            overrideLevelRates=tuple(override),
            leadershipTierRates=tiers,
            **changes,
        )


NUMERIC_FIELDS = (
    "binaryRate",
    "ghostBvPercent",
    "ghostBvWeeklyCap",
    "leadershipPoolPercent",
    "directPoolPercent",
    "binaryPoolPercent",
    "overridePoolPercent",
    "globalCapPercent",
    "directTier2UnlockUsd",
    "directTier3UnlockUsd",
    "settlementHardCap",
)

# name, default, min, max, description - seeds commission_settings
DEFAULT_SETTING_ROWS = [
    ("directTier1Rate", "10", "0", "50", "Direct commission, sponsor level 1 (%)"),
    ("directTier2Rate", "5", "0", "50", "Direct commission, sponsor level 2 (%)"),
    ("directTier3Rate", "2", "0", "50", "Direct commission, sponsor level 3 (%)"),
    ("overrideLevels", "5", "1", "20", "Override depth (levels)"),
    ("overrideLevel1Rate", "2", "0", "20", "Override commission, level 1 (%)"),
    ("overrideLevel2Rate", "1", "0", "20", "Override commission, level 2 (%)"),
    ("overrideLevel3Rate", "1", "0", "20", "Override commission, level 3 (%)"),
    ("overrideLevel4Rate", "0.5", "0", "20", "Override commission, level 4 (%)"),
    ("overrideLevel5Rate", "0.5", "0", "20", "Override commission, level 5 (%)"),
    ("binaryRate", "10", "1", "50", "Binary commission on matched weak-leg volume (%)"),
    ("ghostBvPercent", "80", "0", "100", "Ghost BV share of purchase price (%)"),
    ("ghostBvDurationDays", "10", "1", "90", "Ghost BV lifetime (days)"),
    ("ghostBvWeeklyCap", "20000", "0", "1000000", "Ghost BV per user per week (USD)"),
    ("leadershipPoolPercent", "3", "0", "10", "Leadership pool share of weekly volume (%)"),
    ("leadershipTier1Rate", "1.5", "0", "10", "Leadership tier 1 share (%)"),
    ("leadershipTier2Rate", "1.0", "0", "10", "Leadership tier 2 share (%)"),
    ("leadershipTier3Rate", "0.5", "0", "10", "Leadership tier 3 share (%)"),
    ("poolScalingEnabled", "1", "0", "1", "Scale payouts to pool budgets (0/1)"),
    ("directPoolPercent", "20", "0", "100", "Direct pool (% of sales volume)"),
    ("binaryPoolPercent", "17", "0", "100", "Binary pool (% of sales volume)"),
    ("overridePoolPercent", "3", "0", "100", "Override pool (% of sales volume)"),
    ("globalCapPercent", "40", "0", "100", "Total payout cap (% of sales volume)"),
    ("carryForwardRollover", "0", "0", "1", "Roll capped excess into next week (0/1)"),
    ("directTierUnlockEnabled", "0", "0", "1", "Unlock direct tiers 2-3 by package size (0/1)"),
    ("directTier2UnlockUsd", "500", "0", "1000000", "Package price that unlocks direct tier 2 (USD)"),
    ("directTier3UnlockUsd", "1000", "0", "1000000", "Package price that unlocks direct tier 3 (USD)"),
    ("volumeFlushDays", "180", "1", "3650", "Binary volume lifetime (days)"),
    ("settlementHardCap", "40000", "1", "1000000", "Absolute weekly payout cap per user (USD)"),
]
