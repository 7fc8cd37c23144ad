from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from story_engine.auth import Principal, Role
from story_engine.db import Database
from story_engine.environment import UnitOfWork
from story_engine.migrations import apply_migrations
from story_engine.providers import StaticIdentity


class NullLogger:
    def log_request_payload(self, use_case, payload):
        pass

    def log_request_duration(self, use_case, elapsed_ms):
        pass

    def log_exception(self, exc):
        pass

    def log_error(self, message):
        pass

    def log_information(self, message):
        pass

    def log_debug(self, message):
        pass


class SteppingClock:
    """Advances one second per reading."""

    def __init__(self, start: datetime):
        self.start = start
        self.calls = 0

    def current_utc(self) -> datetime:
        now = self.start + timedelta(seconds=self.calls)
        self.calls += 1
        return now


def identity(*roles: Role) -> StaticIdentity:
    return StaticIdentity(Principal("1", frozenset(roles)))


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(tmp_path / "test_stories.db")
    await apply_migrations(db, NullLogger())
    return db


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def current_utc(self) -> datetime:
        return self.now


@pytest.fixture
def null_logger():
    return NullLogger()


@pytest.fixture
def frozen_clock():
    return FrozenClock(datetime(2024, 1, 1, tzinfo=timezone.utc))


@pytest.fixture
def clock():
    return SteppingClock(datetime(2023, 1, 1, 6, 0, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def make_uow(database, clock):
    opened = []

    def factory(roles=(Role.MEMBER, Role.ADMIN), clock=clock):
        uow = UnitOfWork(database, identity(*roles), clock, NullLogger())
        opened.append(uow)
        return uow

    yield factory

    for uow in opened:
        await uow.close()


@pytest_asyncio.fixture
async def env(make_uow):
    return await make_uow().begin()
