# affiliate_system/config/ranks.py
"""
Rank ladder, leadership tiers and engine constants.
"""
from decimal import Decimal

# (level, name, personalSales, teamSales, leftLeg, rightLeg, hashrateThs, directReferrals, weeklyCap, binaryCap)
DEFAULT_RANKS = [
    (1, "Private", "0", "0", "0", "0", "0", 0, "500", "250"),
    (2, "Corporal", "500", "2500", "1000", "1000", "5", 1, "1000", "500"),
    (3, "Sergeant", "1000", "10000", "4000", "4000", "20", 2, "2500", "1000"),
    (4, "Lieutenant", "2500", "25000", "10000", "10000", "50", 3, "5000", "2000"),
    (5, "Captain", "3500", "35000", "15000", "15000", "75", 4, "7500", "3000"),
    (6, "Major", "5000", "50000", "20000", "20000", "100", 5, "10000", "3500"),
    (7, "Colonel", "10000", "150000", "60000", "60000", "250", 6, "15000", "4000"),
    (8, "General", "25000", "500000", "200000", "200000", "750", 8, "35000", "10000"),
    (9, "5-Star General", "50000", "1500000", "600000", "600000", "2000", 10, "75000", "25000"),
]

BASE_RANK = "Private"

# Leadership pool tiers by rank name; tiers are not cumulative
LEADERSHIP_TIERS = {
    "5-Star General": 1,
    "General": 2,
    "Colonel": 3,
}

LEGS = ("left", "right")

# Job names recorded in job_runs
JOB_GHOST_EXPIRY = "ghost_bv_expiry"
JOB_VOLUME_FLUSH = "volume_flush"
JOB_SETTLEMENT_CALCULATION = "settlement_calculation"
JOB_WEEKLY_SETTLEMENT = "weekly_settlement"
JOB_DAILY_PIPELINE = "daily_pipeline"
JOB_WEEKLY_PIPELINE = "weekly_pipeline"


def defaultRankRows():
    """Default ladder as dicts ready for RankDefinition(**row)."""
    rows = []
    for (level, name, personal, team, left, right, hashrate, directs, weeklyCap, binaryCap) in DEFAULT_RANKS:
        rows.append({
            "rankLevel": level,
            "rankName": name,
            "minPersonalSales": Decimal(personal),
            "minTeamSales": Decimal(team),
            "minLeftLegVolume": Decimal(left),
            "minRightLegVolume": Decimal(right),
            "minHashrateThs": Decimal(hashrate),
            "minDirectReferrals": directs,
            "weeklyCap": Decimal(weeklyCap),
            "binaryCap": Decimal(binaryCap),
        })
    return rows
