"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
from pathlib import Path

# Минимальные переменные окружения для тестов
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ADMINS", "1,900")
os.environ.setdefault("PAYOUT_TOKEN_DECIMALS", "18")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

# Добавить корень проекта в PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from init import get_session, init_tables
from models import User, Package, Purchase, RankDefinition, DirectCommission
from affiliate_system.config.settings import EngineSettings
from affiliate_system.events.event_bus import eventBus
from affiliate_system.services.binary_tree_service import BinaryTreeService
from affiliate_system.services.job_registry import JobRegistry
from affiliate_system.services.rank_service import RankService
from affiliate_system.config.ranks import JOB_GHOST_EXPIRY
from affiliate_system.utils.locks import userLocks
from affiliate_system.utils.time_machine import timeMachine

# Wednesday of the week starting Monday 2025-11-03
TODAY = datetime(2025, 11, 5, 12, 0, tzinfo=timezone.utc)

ADMIN_ID = 1
WALLET = "0x" + "ab" * 20


@pytest.fixture(autouse=True)
def clock():
    """Fixed virtual time and a clean event bus for every test."""
    timeMachine.setTime(TODAY)
    eventBus.clear()
    userLocks.clear()
    yield timeMachine
    timeMachine.resetToRealTime()
    eventBus.clear()


@pytest.fixture
def session_factory(tmp_path):
    """Fresh SQLite database file per test."""
    Session, engine = get_session(f"sqlite:///{tmp_path / 'engine.db'}")
    init_tables(engine)
    yield Session
    engine.dispose()


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        RankService(session).seedRankDefinitions()
        yield session


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def captured_events():
    """Subscribe a recorder to the given event names."""
    captured = []

    def subscribe(*eventNames):
        for eventName in eventNames:
            def recorder(data, eventName=eventName):
                captured.append((eventName, data))
            recorder.__name__ = f"record_{eventName}"
            eventBus.subscribe(eventName, recorder)
        return captured

    return subscribe


class Network:
    """Builds users, placements and purchases for tests."""

    def __init__(self, session, settings):
        self.session = session
        self.settings = settings
        self.tree = BinaryTreeService(session, settings)
        self._counter = 0

    async def add(self, sponsor=None, parent=None, slot=None, leg="left", rank=None) -> User:
        self._counter += 1
        user = User(email=f"user{self._counter}@synterax.test", defaultPlacementLeg=leg)
        if rank:
            definition = self.session.query(RankDefinition).filter_by(rankName=rank).one()
            user.rank = definition.rankName
            user.rankLevel = definition.rankLevel
        self.session.add(user)
        self.session.commit()

        await self.tree.placeUser(
            user.userID,
            sponsorId=sponsor.userID if sponsor else None,
            parentId=parent.userID if parent else None,
            slot=slot,
        )
        return user

    async def chain(self, length: int):
        """Sponsor chain root -> ... -> newest, each placed under the previous one."""
        users = [await self.add()]
        for _ in range(length - 1):
            users.append(await self.add(sponsor=users[-1]))
        return users

    def package(self, price="1000", bvPercent=None, hashrate="10") -> Package:
        package = Package(
            name=f"Miner {price}",
            priceUsd=Decimal(price),
            hashrateThs=Decimal(hashrate),
            bvPercent=Decimal(bvPercent) if bvPercent is not None else None,
        )
        self.session.add(package)
        self.session.commit()
        return package

    def purchase(self, user, amount, bvPercent=None, hashrate="0", package=None, completedAt=None,
                 processed=False) -> Purchase:
        purchase = Purchase(
            userID=user.userID,
            packageID=package.packageID if package else None,
            amountUsd=Decimal(str(amount)),
            packageBvPercent=Decimal(str(bvPercent)) if bvPercent is not None else None,
            hashrateThs=Decimal(str(hashrate)),
            status="COMPLETED",
            completedAt=completedAt or timeMachine.now,
            commissionProcessedAt=timeMachine.now if processed else None,
            bookedWeekStart=timeMachine.weekStartFor(completedAt or timeMachine.now) if processed else None,
        )
        self.session.add(purchase)
        self.session.commit()
        return purchase

    def directCommission(self, user, amount, weekStart, tier=1) -> DirectCommission:
        """Direct commission record as produced by purchase processing."""
        purchase = self.purchase(user, "1")
        record = DirectCommission(
            userID=user.userID,
            purchaseID=purchase.purchaseID,
            sourceUserID=user.userID,
            tier=tier,
            rate=0.1,
            baseAmount=Decimal(amount),
            scaledAmount=Decimal(amount),
            weekStart=weekStart,
        )
        self.session.add(record)
        self.session.commit()
        return record


@pytest.fixture
def network(session, settings):
    return Network(session, settings)


def mark_expiry_sweep(session):
    """Record today's Ghost BV sweep without running it."""
    JobRegistry(session).markRun(JOB_GHOST_EXPIRY, timeMachine.today.isoformat())
    session.commit()
