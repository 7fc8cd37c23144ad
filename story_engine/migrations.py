from datetime import datetime, timezone

from story_engine.db import Database, to_db_time
from story_engine.providers import RequestLogger

# Append only. Applied migrations are never edited.
MIGRATIONS = [
    (
        1,
        "create stories, tasks and domain events",
        [
            """
            CREATE TABLE IF NOT EXISTS stories (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                story_id TEXT NOT NULL REFERENCES stories (id) ON DELETE CASCADE,
                title TEXT NOT NULL,
                description TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS domain_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                aggregate_id TEXT NOT NULL,
                aggregate_type TEXT NOT NULL,
                event_type TEXT NOT NULL,
                payload TEXT,
                created_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS tasks_story_id ON tasks (story_id)",
            "CREATE INDEX IF NOT EXISTS stories_created_at_id ON stories (created_at, id)",
            "CREATE INDEX IF NOT EXISTS domain_events_aggregate_id ON domain_events (aggregate_id, created_at)",
        ],
    ),
]

MIGRATIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at TEXT NOT NULL
)
"""


async def apply_migrations(database: Database, logger: RequestLogger) -> list[int]:
    """
    Bring the schema up to date. Each pending migration runs once, in
    version order, inside its own transaction. Returns the versions applied.
    """
    conn = await database.connect()
    try:
        await conn.execute(MIGRATIONS_TABLE_SQL)
        async with conn.execute("SELECT version FROM schema_migrations") as cursor:
            applied = {row["version"] for row in await cursor.fetchall()}
    finally:
        await conn.close()

    newly_applied = []
    for version, name, statements in sorted(MIGRATIONS, key=lambda m: m[0]):
        if version in applied:
            continue

        transaction = await database.begin()
        try:
            for sql in statements:
                cursor = await transaction.execute(sql)
                await cursor.close()
            cursor = await transaction.execute(
                "INSERT INTO schema_migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (version, name, to_db_time(datetime.now(timezone.utc))),
            )
            await cursor.close()
            await transaction.commit()
        finally:
            await transaction.close()

        logger.log_information(f"Applied migration {version}: {name}")
        newly_applied.append(version)

    return newly_applied
