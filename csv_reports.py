import io
import csv
import logging
from datetime import date
from typing import List, Dict, Any, Optional, Tuple
from sqlalchemy.orm import Session

import config
from models import (
    WeeklySettlement, DirectCommission, BinaryCommission, OverrideCommission,
    LeadershipPoolDistribution, LeadershipPoolShare
)

logger = logging.getLogger(__name__)

# Dictionary mapping report types to information about the report
REPORTS = {
    "weekly_settlement": {
        "name": "Weekly Settlement Report",
        "generator": lambda s, p: weekly_settlement_report(s, p)
    },
    "commission_ledger": {
        "name": "Commission Ledger",
        "generator": lambda s, p: commission_ledger_report(s, p)
    },
    "leadership_pool": {
        "name": "Leadership Pool Report",
        "generator": lambda s, p: leadership_pool_report(s, p)
    }
}

REPORT_TYPES = {key: info["name"] for key, info in REPORTS.items()}


def _week_param(params: Dict[str, Any]) -> date:
    week_start = params.get("weekStart")
    if isinstance(week_start, str):
        week_start = date.fromisoformat(week_start)
    if not isinstance(week_start, date):
        raise ValueError("weekStart parameter is required")
    return week_start


def generate_csv_report(
        session: Session,
        report_type: str,
        params: Dict[str, Any] = None
) -> Optional[io.BytesIO]:
    """
    Generates a CSV report based on report type and parameters

    Args:
        session: Database session
        report_type: Type of report (one of REPORTS keys)
        params: Report parameters (weekStart, userId)

    Returns:
        BytesIO object containing CSV data or None if report generation failed
    """
    if report_type not in REPORTS:
        logger.error(f"Unknown report type: {report_type}")
        return None

    try:
        if params is None:
            params = {}

        headers, data = REPORTS[report_type]["generator"](session, params)

        string_output = io.StringIO()
        writer = csv.writer(string_output, delimiter=config.CSV_DELIMITER)  # Semicolon for Excel

        writer.writerow(headers)
        for row in data:
            writer.writerow(row)

        output = io.BytesIO(string_output.getvalue().encode('utf-8-sig'))  # BOM for Excel
        output.seek(0)
        return output

    except Exception as e:
        logger.error(f"Error generating {report_type} report: {e}", exc_info=True)
        return None


def weekly_settlement_report(session: Session, params: Dict[str, Any]) -> Tuple[List[str], List[List[Any]]]:
    """
    One row per user settlement of the week, with the breakdown that
    produced the grand total and the claim status.
    """
    week_start = _week_param(params)

    headers = ["Settlement ID", "User ID", "Week Start", "Direct L1", "Direct L2", "Direct L3", "Binary",
               "Override", "Leadership", "Carry In", "Raw Total", "Weekly Cap", "Grand Total", "Carry Forward",
               "Status", "Merkle Leaf", "Claimed At", "Transaction Hash"]

    settlements = session.query(WeeklySettlement).filter_by(
        weekStart=week_start
    ).order_by(WeeklySettlement.userID).all()

    data = []
    for s in settlements:
        data.append([
            s.settlementID, s.userID, s.weekStart.isoformat(),
            s.directL1, s.directL2, s.directL3, s.binaryTotal, s.overrideTotal, s.leadershipTotal, s.carryIn,
            s.rawTotal, s.weeklyCap, s.grandTotal, s.carryForward,
            s.status, s.merkleLeaf or "",
            s.claimedAt.strftime('%Y-%m-%d %H:%M:%S') if s.claimedAt else "",
            s.transactionHash or "",
        ])

    return headers, data


def commission_ledger_report(session: Session, params: Dict[str, Any]) -> Tuple[List[str], List[List[Any]]]:
    """All commission records earned by one user, oldest week first."""
    user_id = params.get("userId")
    if user_id is None:
        raise ValueError("userId parameter is required")

    headers = ["Type", "Week Start", "Purchase ID", "Source User", "Tier/Level", "Rate", "Base Amount",
               "Paid Amount", "Status"]

    rows = []
    for record in session.query(DirectCommission).filter_by(userID=user_id).all():
        rows.append(["direct", record.weekStart, record.purchaseID, record.sourceUserID, record.tier,
                     record.rate, record.baseAmount, record.scaledAmount, record.status])
    for record in session.query(OverrideCommission).filter_by(userID=user_id).all():
        rows.append(["override", record.weekStart, record.purchaseID, record.sourceUserID, record.level,
                     record.rate, record.baseAmount, record.scaledAmount, record.status])
    for record in session.query(BinaryCommission).filter_by(userID=user_id).all():
        rows.append(["binary", record.weekStart, "", "", "", record.rate, record.baseAmount,
                     record.scaledAmount, record.status])

    rows.sort(key=lambda row: (row[1], row[0]))
    for row in rows:
        row[1] = row[1].isoformat()

    return headers, rows


def leadership_pool_report(session: Session, params: Dict[str, Any]) -> Tuple[List[str], List[List[Any]]]:
    """Pool summary line followed by one line per leader."""
    week_start = _week_param(params)

    headers = ["Week Start", "User ID", "Rank", "Tier", "Amount", "Pool Total", "Weekly Volume", "Undistributed"]

    distribution = session.query(LeadershipPoolDistribution).filter_by(weekStart=week_start).first()
    if not distribution:
        return headers, []

    data = [[week_start.isoformat(), "", "", "", "", distribution.totalPoolAmount,
             distribution.totalWeeklyVolume, distribution.undistributedAmount]]

    lines = session.query(LeadershipPoolShare).filter_by(
        weekStart=week_start
    ).order_by(LeadershipPoolShare.tier, LeadershipPoolShare.userID).all()
    for line in lines:
        data.append([week_start.isoformat(), line.userID, line.rankName, line.tier, line.amount, "", "", ""])

    return headers, data
