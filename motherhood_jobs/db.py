import logging
import re
from contextlib import asynccontextmanager
from typing import Any, List, Optional, Tuple

logger = logging.getLogger(__name__)

# ─── ASYNC PostgreSQL Wrapper ────────────────────────────────────────────────
class AsyncPostgresCursor:
    """Wraps asyncpg connection to support '?' placeholders"""
    def __init__(self, conn):
        self.conn = conn
        self._last_result = None

    async def execute(self, sql: str, params: Tuple = ()) -> Any:
        # asyncpg uses $1, $2, $3. We must convert ? -> $n
        # Regex to ignore strings matches
        params = list(params)

        counter = 0
        def replace_placeholder(match):
            nonlocal counter
            if match.group(1): return match.group(1)
            counter += 1
            return f"${counter}"

        pattern = r"(\'[^\']*\'|\"[^\"]*\")|\?"
        pg_sql = re.sub(pattern, replace_placeholder, sql)

        self._last_result = await self.conn.fetch(pg_sql, *params)
        return self

    async def fetchone(self) -> Optional[Any]:
        if self._last_result and len(self._last_result) > 0:
            return self._last_result[0]
        return None

    async def fetchall(self) -> List[Any]:
        return self._last_result or []

class AsyncPostgresConnection:
    """Wraps asyncpg pool connection"""
    def __init__(self, conn):
        self.conn = conn

    def cursor(self):
        return AsyncPostgresCursor(self.conn)

    async def execute(self, sql: str, params: Tuple = ()) -> AsyncPostgresCursor:
        cursor = self.cursor()
        await cursor.execute(sql, params)
        return cursor

    async def commit(self):
        pass # asyncpg auto-commits outside an explicit transaction

# ─── ASYNC SQLite Wrapper ────────────────────────────────────────────────────
class AsyncSqliteConnection:
    """Wraps aiosqlite connection"""
    def __init__(self, conn):
        self.conn = conn

    async def execute(self, sql: str, params: Tuple = ()):
        return await self.conn.execute(sql, params)

    async def commit(self):
        await self.conn.commit()

# ─── Schema ──────────────────────────────────────────────────────────────────
# Timestamps are fixed-width ISO-8601 TEXT on both backends (see job_models).
_SQLITE_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS background_jobs (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        payload TEXT NOT NULL DEFAULT '{}',
        status TEXT NOT NULL DEFAULT 'pending',
        priority INTEGER NOT NULL DEFAULT 0,
        retry_count INTEGER NOT NULL DEFAULT 0,
        max_retries INTEGER NOT NULL DEFAULT 3,
        result TEXT,
        error_message TEXT,
        user_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        completed_at TEXT,
        not_before TEXT,
        lease_expires_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS health_alerts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        type TEXT NOT NULL,
        priority TEXT NOT NULL,
        read INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS image_analysis_results (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        analysis_type TEXT NOT NULL,
        result TEXT,
        created_at TEXT NOT NULL
    )
    """,
]

_POSTGRES_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS background_jobs (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        payload JSONB NOT NULL DEFAULT '{}',
        status TEXT NOT NULL DEFAULT 'pending',
        priority INTEGER NOT NULL DEFAULT 0,
        retry_count INTEGER NOT NULL DEFAULT 0,
        max_retries INTEGER NOT NULL DEFAULT 3,
        result JSONB,
        error_message TEXT,
        user_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        completed_at TEXT,
        not_before TEXT,
        lease_expires_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS health_alerts (
        id SERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        type TEXT NOT NULL,
        priority TEXT NOT NULL,
        read BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS image_analysis_results (
        id SERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        analysis_type TEXT NOT NULL,
        result JSONB,
        created_at TEXT NOT NULL
    )
    """,
]

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_background_jobs_dispatch ON background_jobs(status, priority, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_image_analysis_user ON image_analysis_results(user_id, analysis_type, created_at)",
]

# ─── Database ────────────────────────────────────────────────────────────────
class Database:
    """
    Async connection factory.
    DATABASE_URL set -> PostgreSQL via an asyncpg pool; otherwise a SQLite file via aiosqlite.
    """

    def __init__(self, url: str = "", sqlite_path: str = "background_jobs.db"):
        self.url = url
        self.sqlite_path = sqlite_path
        self._pool = None

    @property
    def is_postgres(self) -> bool:
        return bool(self.url)

    async def connect(self):
        if self.is_postgres and not self._pool:
            import asyncpg
            self._pool = await asyncpg.create_pool(dsn=self.url, min_size=1, max_size=20)
            logger.info("Async PostgreSQL Pool initialized.")

    async def close(self):
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Async PostgreSQL Pool closed.")

    @asynccontextmanager
    async def connection(self):
        if self.is_postgres:
            if not self._pool: await self.connect()
            async with self._pool.acquire() as conn:
                yield AsyncPostgresConnection(conn)
        else:
            import aiosqlite
            async with aiosqlite.connect(self.sqlite_path) as conn:
                conn.row_factory = aiosqlite.Row
                yield AsyncSqliteConnection(conn)

    async def init_schema(self):
        """Create the queue table and the tables the built-in handlers touch."""
        statements = (_POSTGRES_SCHEMA if self.is_postgres else _SQLITE_SCHEMA) + _INDEXES
        async with self.connection() as conn:
            for statement in statements:
                await conn.execute(statement)
            await conn.commit()
        logger.info(f"Schema ready ({'postgres' if self.is_postgres else self.sqlite_path}).")

