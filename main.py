import argparse
import asyncio
import logging
from datetime import date

import config
from init import get_session, init_tables
from affiliate_system.events.setup import setupEventHandlers
from affiliate_system.services.rank_service import RankService
from affiliate_system.services.settings_service import SettingsService
from affiliate_system.utils.time_machine import timeMachine
from scheduler import EngineScheduler

logger = logging.getLogger(__name__)


def parse_week(value: str) -> date:
    """ISO date; any day is mapped to the Monday of its week."""
    return timeMachine.weekStartFor(date.fromisoformat(value))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="synterax-affiliate", description="Affiliate compensation engine")
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create tables and seed ranks and settings")
    commands.add_parser("run-daily", help="Run the daily pipeline once")

    calculate = commands.add_parser("calculate-week", help="Aggregate settlements for a week")
    calculate.add_argument("week", type=parse_week, nargs="?", help="Any date of the week (default: last week)")

    finalize = commands.add_parser("finalize-week", help="Publish the Merkle root for a week")
    finalize.add_argument("week", type=parse_week, nargs="?", help="Any date of the week (default: last week)")

    commands.add_parser("run", help="Run the scheduler loop")
    return parser


async def setup(database_url: str = None):
    logger.info("Starting engine setup...")

    Session, engine = get_session(database_url)
    init_tables(engine)
    logger.info("Database initialized")

    with Session() as session:
        RankService(session).seedRankDefinitions()
        SettingsService(session).seedDefaults()

    setupEventHandlers(Session)
    return Session


async def main(argv=None):
    args = build_parser().parse_args(argv)
    Session = await setup(args.database_url)
    scheduler = EngineScheduler(Session)

    if args.command == "init-db":
        logger.info("Database ready")
        return

    if args.command == "run-daily":
        await scheduler.run_daily()
        return

    if args.command in ("calculate-week", "finalize-week"):
        from affiliate_system.services.settlement_service import SettlementService
        week = args.week or timeMachine.previousWeekStart
        with Session() as session:
            settings = SettingsService(session).loadSettings()
            service = SettlementService(session, settings)
            if args.command == "calculate-week":
                result = await service.calculateWeek(week)
            else:
                result = await service.finalizeWeek(week)
        logger.info(f"{args.command} {week}: {result}")
        return

    try:
        await scheduler.run()
    finally:
        await scheduler.stop()


def cli():
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    asyncio.run(main())


if __name__ == '__main__':
    try:
        cli()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Engine stopped.")
    except Exception as e:
        logger.critical(f"Unexpected error: {e}")
        raise
