import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from uuid import UUID

import aiosqlite

from story_engine.domain import (
    DomainEvent,
    Story,
    StoryBasicDetailsCaptured,
    StoryBasicDetailsRevised,
    StoryRemoved,
    Task,
    TaskBasicDetailsAddedToStory,
    TaskBasicDetailsRevised,
    TaskRemoved,
)
from story_engine.errors import InconsistentStateError


def to_db_time(value: datetime) -> str:
    # Fixed width so that text ordering matches time ordering.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class Database:
    def __init__(self, path: Path | str, timeout: float = 5.0):
        self.path = Path(path)
        # Seconds a transaction waits for another writer to finish.
        self.timeout = timeout

    async def connect(self) -> aiosqlite.Connection:
        # Autocommit mode: transactions are begun explicitly.
        conn = await aiosqlite.connect(self.path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        await conn.execute("PRAGMA foreign_keys = ON")
        return conn

    async def begin(self) -> "Transaction":
        conn = await self.connect()
        try:
            # Take the write lock up front; a second writer waits here until
            # the first commits or rolls back.
            await conn.execute("BEGIN IMMEDIATE")
        except BaseException:
            await conn.close()
            raise
        return Transaction(conn)


class Transaction:
    """
    Handle on one open transaction. Owns its connection; the store only
    ever sees this handle.
    """

    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"

    def __init__(self, connection: aiosqlite.Connection):
        self._connection = connection
        self.state = self.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state == self.ACTIVE

    def _require_active(self) -> None:
        if not self.is_active:
            raise RuntimeError(f"Transaction is {self.state}")

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        self._require_active()
        return await self._connection.execute(sql, params)

    async def fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        cursor = await self.execute(sql, params)
        try:
            return await cursor.fetchone()
        finally:
            await cursor.close()

    async def fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        cursor = await self.execute(sql, params)
        try:
            return list(await cursor.fetchall())
        finally:
            await cursor.close()

    async def commit(self) -> None:
        self._require_active()
        await self._connection.execute("COMMIT")
        self.state = self.COMMITTED

    async def rollback(self) -> None:
        self._require_active()
        await self._connection.execute("ROLLBACK")
        self.state = self.ROLLED_BACK

    async def close(self) -> None:
        try:
            if self.is_active:
                await self.rollback()
        finally:
            await self._connection.close()


def _expect_one_row(count: int, what: str) -> None:
    if count != 1:
        raise InconsistentStateError(f"Expected {what} to affect 1 row, affected {count}")


def _story_from_row(row: sqlite3.Row) -> Story:
    return Story(
        id=UUID(row["id"]),
        title=row["title"],
        description=row["description"],
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )


def _task_from_row(row: sqlite3.Row) -> Task:
    return Task(
        id=UUID(row["id"]),
        title=row["title"],
        description=row["description"],
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )


class SqliteStoryStore:
    """
    Stories, tasks and the domain event log, read and written inside the
    caller's transaction. Never commits or rolls back.
    """

    def __init__(self, transaction: Transaction):
        self.transaction = transaction

    async def _count(self, sql: str, params: tuple, what: str) -> bool:
        row = await self.transaction.fetchone(sql, params)
        count = row[0]
        if count == 0:
            return False
        if count == 1:
            return True
        raise InconsistentStateError(f"Inconsistent database state. Duplicate {what}")

    async def exists(self, story_id: UUID) -> bool:
        return await self._count(
            "SELECT COUNT(*) FROM stories WHERE id = ?",
            (str(story_id),),
            f"story id: '{story_id}'",
        )

    async def task_exists(self, task_id: UUID) -> bool:
        return await self._count(
            "SELECT COUNT(*) FROM tasks WHERE id = ?",
            (str(task_id),),
            f"task id: '{task_id}'",
        )

    async def get_by_id(self, story_id: UUID) -> Story | None:
        row = await self.transaction.fetchone(
            "SELECT * FROM stories WHERE id = ?", (str(story_id),)
        )
        if row is None:
            return None

        story = _story_from_row(row)
        task_rows = await self.transaction.fetchall(
            "SELECT * FROM tasks WHERE story_id = ? ORDER BY rowid ASC",
            (str(story_id),),
        )
        story.tasks = [_task_from_row(r) for r in task_rows]
        return story

    async def get_paged(
        self, limit: int, after: tuple[str, str] | None = None
    ) -> tuple[list[Story], tuple[str, str] | None]:
        """
        Stories ordered by (created_at, id), starting after the given key.
        Returns the page and the key to resume from, or None when exhausted.
        """
        # One extra row tells us whether another page exists.
        if after is None:
            rows = await self.transaction.fetchall(
                "SELECT * FROM stories ORDER BY created_at ASC, id ASC LIMIT ?",
                (limit + 1,),
            )
        else:
            created_at, last_id = after
            rows = await self.transaction.fetchall(
                """
                SELECT * FROM stories
                WHERE created_at > ? OR (created_at = ? AND id > ?)
                ORDER BY created_at ASC, id ASC
                LIMIT ?
                """,
                (created_at, created_at, last_id, limit + 1),
            )

        has_more = len(rows) > limit
        rows = rows[:limit]
        stories = [_story_from_row(r) for r in rows]

        if stories:
            by_id = {str(s.id): s for s in stories}
            placeholders = ", ".join("?" for _ in by_id)
            task_rows = await self.transaction.fetchall(
                f"SELECT * FROM tasks WHERE story_id IN ({placeholders}) ORDER BY rowid ASC",
                tuple(by_id),
            )
            for r in task_rows:
                by_id[r["story_id"]].tasks.append(_task_from_row(r))

        next_key = None
        if has_more:
            last = rows[-1]
            next_key = (last["created_at"], last["id"])
        return stories, next_key

    async def get_domain_events(self, aggregate_id: UUID) -> list[dict]:
        rows = await self.transaction.fetchall(
            """
            SELECT id, aggregate_id, aggregate_type, event_type, payload, created_at
            FROM domain_events
            WHERE aggregate_id = ?
            ORDER BY created_at ASC, id ASC
            """,
            (str(aggregate_id),),
        )
        return [
            {
                "id": row["id"],
                "aggregate_id": UUID(row["aggregate_id"]),
                "aggregate_type": row["aggregate_type"],
                "event_type": row["event_type"],
                "payload": json.loads(row["payload"]) if row["payload"] else {},
                "created_at": from_db_time(row["created_at"]),
            }
            for row in rows
        ]

    # Events are applied to the tables as they happen; the log is kept for
    # audit and reads, never replayed.
    async def apply_event(self, event: DomainEvent) -> None:
        now = to_db_time(event.occurred_at)
        story_id = str(event.aggregate_id)

        if isinstance(event, StoryBasicDetailsCaptured):
            cursor = await self.transaction.execute(
                "INSERT INTO stories (id, title, description, created_at) VALUES (?, ?, ?, ?)",
                (story_id, event.title, event.description, now),
            )
            _expect_one_row(cursor.rowcount, "story insert")

        elif isinstance(event, StoryBasicDetailsRevised):
            cursor = await self.transaction.execute(
                "UPDATE stories SET title = ?, description = ?, updated_at = ? WHERE id = ?",
                (event.title, event.description, now, story_id),
            )
            _expect_one_row(cursor.rowcount, "story update")

        elif isinstance(event, StoryRemoved):
            # Tasks go with the story through the foreign key cascade.
            cursor = await self.transaction.execute(
                "DELETE FROM stories WHERE id = ?", (story_id,)
            )
            _expect_one_row(cursor.rowcount, "story delete")

        elif isinstance(event, TaskBasicDetailsAddedToStory):
            cursor = await self.transaction.execute(
                """
                INSERT INTO tasks (id, story_id, title, description, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (str(event.task_id), story_id, event.title, event.description, now),
            )
            _expect_one_row(cursor.rowcount, "task insert")

        elif isinstance(event, TaskBasicDetailsRevised):
            cursor = await self.transaction.execute(
                """
                UPDATE tasks SET title = ?, description = ?, updated_at = ?
                WHERE id = ? AND story_id = ?
                """,
                (event.title, event.description, now, str(event.task_id), story_id),
            )
            _expect_one_row(cursor.rowcount, "task update")

        elif isinstance(event, TaskRemoved):
            cursor = await self.transaction.execute(
                "DELETE FROM tasks WHERE id = ? AND story_id = ?",
                (str(event.task_id), story_id),
            )
            _expect_one_row(cursor.rowcount, "task delete")

        else:
            raise ValueError(f"Unknown event type: {event.event_type}")

        await cursor.close()

        cursor = await self.transaction.execute(
            """
            INSERT INTO domain_events (aggregate_id, aggregate_type, event_type, payload, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (story_id, event.aggregate_type, event.event_type, json.dumps(event.payload()), now),
        )
        _expect_one_row(cursor.rowcount, "domain event insert")
        await cursor.close()
