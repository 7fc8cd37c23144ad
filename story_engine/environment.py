from dataclasses import dataclass

from story_engine.db import Database, SqliteStoryStore, Transaction
from story_engine.providers import Clock, Identity, RequestLogger


@dataclass(frozen=True)
class Env:
    """Everything a handler may touch during one unit of work."""

    identity: Identity
    clock: Clock
    logger: RequestLogger
    store: SqliteStoryStore


class UnitOfWork:
    """
    One transaction per request (or test). begin() hands out the Env;
    commit() and rollback() only act on a transaction that was begun and
    is still open. Not to be shared across concurrent requests.
    """

    def __init__(self, database: Database, identity: Identity, clock: Clock, logger: RequestLogger):
        self.database = database
        self.identity = identity
        self.clock = clock
        self.logger = logger
        self._transaction: Transaction | None = None
        self._closed = False

    @property
    def started(self) -> bool:
        return self._transaction is not None

    async def begin(self) -> Env:
        if self._transaction is not None:
            raise RuntimeError("Unit of work already begun")
        self._transaction = await self.database.begin()
        return Env(
            identity=self.identity,
            clock=self.clock,
            logger=self.logger,
            store=SqliteStoryStore(self._transaction),
        )

    async def commit(self) -> None:
        if self._transaction is not None and self._transaction.is_active:
            await self._transaction.commit()

    async def rollback(self) -> None:
        if self._transaction is not None and self._transaction.is_active:
            await self._transaction.rollback()

    async def close(self) -> None:
        # An uncommitted transaction is rolled back on close.
        if self._transaction is not None and not self._closed:
            self._closed = True
            await self._transaction.close()

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
