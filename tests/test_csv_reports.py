"""Tests for CSV report exports."""

import pytest
from datetime import date

from csv_reports import generate_csv_report, REPORT_TYPES
from affiliate_system.config.settings import EngineSettings
from affiliate_system.services.settlement_service import SettlementService
from conftest import mark_expiry_sweep

WEEK = date(2025, 11, 3)


def read_rows(output):
    text = output.getvalue().decode("utf-8-sig")
    return [line.split(";") for line in text.strip().splitlines()]


class TestCsvReports:

    @pytest.mark.asyncio
    async def test_weekly_settlement_report(self, session, network):
        root = await network.add()
        child = await network.add(sponsor=root)
        network.directCommission(root, "100", WEEK)
        network.directCommission(child, "40", WEEK)
        mark_expiry_sweep(session)
        service = SettlementService(session, EngineSettings(poolScalingEnabled=False))
        await service.calculateWeek(WEEK)
        await service.finalizeWeek(WEEK)

        rows = read_rows(generate_csv_report(session, "weekly_settlement", {"weekStart": "2025-11-03"}))

        assert rows[0][0] == "Settlement ID"
        assert len(rows) == 3
        grand = rows[0].index("Grand Total")
        status = rows[0].index("Status")
        assert [row[grand] for row in rows[1:]] == ["100.00", "40.00"]
        assert {row[status] for row in rows[1:]} == {"ready_to_claim"}

    @pytest.mark.asyncio
    async def test_commission_ledger_report(self, session, network):
        user = await network.add()
        network.directCommission(user, "25", WEEK)

        rows = read_rows(generate_csv_report(session, "commission_ledger", {"userId": user.userID}))

        assert rows[1][0] == "direct"
        assert rows[1][1] == "2025-11-03"

    def test_missing_parameters(self, session):
        assert generate_csv_report(session, "commission_ledger", {}) is None
        assert generate_csv_report(session, "leadership_pool") is None

    def test_unknown_report(self, session):
        assert generate_csv_report(session, "payroll", {}) is None
        assert "weekly_settlement" in REPORT_TYPES
