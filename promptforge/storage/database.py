"""SQLite database for subscriptions, history, preferences and events."""

import asyncio
import json
import re
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path

import aiosqlite

from ..logging_config import get_logger
from ..models.preferences import Preferences
from ..models.quota import QUOTA_COLUMNS, GeneratedPrompt, HistoryItem, QuotaRecord

logger = get_logger(__name__)

HISTORY_MAX_CHARS = 4000
HISTORY_RETENTION_DAYS = 30

REDACTION_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\bsk-[A-Za-z0-9]{16,}\b", re.IGNORECASE), "[redacted-key]"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[email]"),
    (re.compile(r"(https?://\S+)", re.IGNORECASE), "[url]"),
    (re.compile(r"\bpk_live_[A-Za-z0-9]{16,}\b", re.IGNORECASE), "[redacted-key]"),
]

_SUBSCRIPTION_COLUMNS = {
    "tier",
    "period_start",
    "trial_expires_at",
    "quota_generations",
    "quota_edits",
    "quota_clarifying",
    "usage_generations",
    "usage_edits",
    "usage_clarifying",
    "premium_finals_remaining",
}
_COUNTER_COLUMNS = {column for pair in QUOTA_COLUMNS.values() for column in pair}


def redact_for_storage(value: str) -> str:
    """Trim, cap and strip keys, e-mails and URLs before a row is written."""
    limited = value.strip()[:HISTORY_MAX_CHARS]
    for pattern, replacement in REDACTION_PATTERNS:
        limited = pattern.sub(replacement, limited)
    return limited


def _row_to_quota(row: aiosqlite.Row) -> QuotaRecord:
    return QuotaRecord(
        user_id=row["user_id"],
        tier=row["tier"],
        period_start=datetime.fromisoformat(row["period_start"]),
        trial_expires_at=(
            datetime.fromisoformat(row["trial_expires_at"]) if row["trial_expires_at"] else None
        ),
        quota_generations=row["quota_generations"] or 0,
        quota_edits=row["quota_edits"] or 0,
        quota_clarifying=row["quota_clarifying"] or 0,
        usage_generations=row["usage_generations"] or 0,
        usage_edits=row["usage_edits"] or 0,
        usage_clarifying=row["usage_clarifying"] or 0,
        premium_finals_remaining=row["premium_finals_remaining"] or 0,
    )


class _ConnectionPool:
    """Simple async SQLite connection pool with WAL mode."""

    def __init__(self, db_path: Path, size: int = 5):
        self._db_path = db_path
        self._size = size
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=size)
        self._initialized = False

    async def init(self):
        """Create pool connections with WAL mode."""
        for _ in range(self._size):
            conn = await aiosqlite.connect(self._db_path)
            conn.row_factory = aiosqlite.Row
            # busy_timeout first so the journal mode switch can wait for locks
            await conn.execute("PRAGMA busy_timeout=5000")
            await conn.execute("PRAGMA journal_mode=WAL")
            await self._pool.put(conn)
        self._initialized = True

    @asynccontextmanager
    async def acquire(self):
        """Acquire a connection from the pool."""
        conn = await self._pool.get()
        try:
            yield conn
        finally:
            await self._pool.put(conn)

    async def close(self):
        """Close all pooled connections."""
        while not self._pool.empty():
            conn = await self._pool.get()
            await conn.close()
        self._initialized = False


class PromptDatabase:
    """SQLite database manager for PromptForge persistence."""

    def __init__(self, db_path: str = "promptforge.db"):
        self.db_path = Path(db_path)
        self._pool: _ConnectionPool | None = None

    async def connect(self) -> None:
        """Connect to the database and create tables if needed."""
        if self._pool is not None and self._pool._initialized:
            return
        logger.info("Database connecting: %s", self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._pool = _ConnectionPool(self.db_path)
        await self._pool.init()
        async with self._pool.acquire() as conn:
            await self._create_tables(conn)

    async def close(self) -> None:
        """Close all database connections."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    def _check_pool(self) -> _ConnectionPool:
        """Get the active connection pool.

        Raises RuntimeError if not connected.
        """
        if self._pool is None or not self._pool._initialized:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def _create_tables(self, conn: aiosqlite.Connection) -> None:
        """Create database tables if they don't exist."""
        await conn.executescript("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS subscriptions (
                user_id TEXT PRIMARY KEY,
                tier TEXT NOT NULL DEFAULT 'free_trial',
                period_start TEXT NOT NULL,
                trial_expires_at TEXT,
                quota_generations INTEGER DEFAULT 0,
                quota_edits INTEGER DEFAULT 0,
                quota_clarifying INTEGER DEFAULT 0,
                usage_generations INTEGER DEFAULT 0,
                usage_edits INTEGER DEFAULT 0,
                usage_clarifying INTEGER DEFAULT 0,
                premium_finals_remaining INTEGER DEFAULT 0,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS generations (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                user_id TEXT,
                task TEXT NOT NULL,
                label TEXT NOT NULL,
                body TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS preferences (
                scope TEXT PRIMARY KEY,
                preferences_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                payload_json TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_generations_session
                ON generations(session_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_events_session
                ON events(session_id, event_type);
        """)
        await conn.commit()

    # Session methods
    async def ensure_session(self, session_id: str, user_id: str | None = None) -> None:
        """Insert the session row if it does not exist yet."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                await conn.execute(
                    "INSERT OR IGNORE INTO sessions (id, user_id, created_at) VALUES (?, ?, ?)",
                    (session_id, user_id, datetime.now().isoformat()),
                )
                if user_id:
                    await conn.execute(
                        "UPDATE sessions SET user_id = ? WHERE id = ? AND user_id IS NULL",
                        (user_id, session_id),
                    )
                await conn.commit()
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in ensure_session: %s", e, exc_info=True)
                raise

    # Subscription methods
    async def get_subscription(self, user_id: str) -> QuotaRecord | None:
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                "SELECT * FROM subscriptions WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
        return _row_to_quota(row) if row else None

    async def insert_subscription_if_missing(self, record: QuotaRecord) -> bool:
        """Insert ``record`` unless a row for the user exists. Returns True if inserted."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                cursor = await conn.execute(
                    """
                    INSERT OR IGNORE INTO subscriptions (
                        user_id, tier, period_start, trial_expires_at,
                        quota_generations, quota_edits, quota_clarifying,
                        usage_generations, usage_edits, usage_clarifying,
                        premium_finals_remaining, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.user_id,
                        record.tier.value,
                        record.period_start.isoformat(),
                        record.trial_expires_at.isoformat() if record.trial_expires_at else None,
                        record.quota_generations,
                        record.quota_edits,
                        record.quota_clarifying,
                        record.usage_generations,
                        record.usage_edits,
                        record.usage_clarifying,
                        record.premium_finals_remaining,
                        datetime.now().isoformat(),
                    ),
                )
                await conn.commit()
                return cursor.rowcount > 0
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in insert_subscription_if_missing: %s", e, exc_info=True)
                raise

    async def _conditional_update(
        self, method: str, sql: str, params: tuple, user_id: str
    ) -> QuotaRecord | None:
        """Run one UPDATE and return the fresh row, or None if nothing matched."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                cursor = await conn.execute(sql, params)
                changed = cursor.rowcount
                await conn.commit()
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in %s: %s", method, e, exc_info=True)
                raise
            if changed == 0:
                return None
            cursor = await conn.execute(
                "SELECT * FROM subscriptions WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
        return _row_to_quota(row) if row else None

    async def update_subscription(
        self,
        user_id: str,
        fields: dict,
        expected_tier: str | None = None,
        expected_period_start: str | None = None,
    ) -> QuotaRecord | None:
        """Set ``fields`` on a subscription row.

        The optional ``expected_*`` values turn this into a compare-and-swap:
        the row only changes if it still has that tier / period start.
        """
        unknown = set(fields) - _SUBSCRIPTION_COLUMNS
        if unknown:
            raise ValueError(f"Unknown subscription columns: {sorted(unknown)}")
        assignments = ", ".join(f"{column} = ?" for column in fields)
        params: list = list(fields.values())
        sql = f"UPDATE subscriptions SET {assignments}, updated_at = ? WHERE user_id = ?"
        params += [datetime.now().isoformat(), user_id]
        if expected_tier is not None:
            sql += " AND tier = ?"
            params.append(expected_tier)
        if expected_period_start is not None:
            sql += " AND period_start = ?"
            params.append(expected_period_start)
        return await self._conditional_update("update_subscription", sql, tuple(params), user_id)

    async def increment_usage(
        self, user_id: str, usage_column: str, quota_column: str
    ) -> QuotaRecord | None:
        """Atomically bump ``usage_column`` iff it stays within ``quota_column``."""
        if usage_column not in _COUNTER_COLUMNS or quota_column not in _COUNTER_COLUMNS:
            raise ValueError(f"Unknown quota columns: {usage_column}, {quota_column}")
        sql = (
            f"UPDATE subscriptions SET {usage_column} = {usage_column} + 1, updated_at = ? "
            f"WHERE user_id = ? AND {usage_column} + 1 <= {quota_column}"
        )
        return await self._conditional_update(
            "increment_usage", sql, (datetime.now().isoformat(), user_id), user_id
        )

    async def decrement_premium(self, user_id: str) -> QuotaRecord | None:
        """Atomically take one premium slot iff any remain."""
        sql = (
            "UPDATE subscriptions SET premium_finals_remaining = premium_finals_remaining - 1, "
            "updated_at = ? WHERE user_id = ? AND premium_finals_remaining > 0"
        )
        return await self._conditional_update(
            "decrement_premium", sql, (datetime.now().isoformat(), user_id), user_id
        )

    # Generation history
    async def record_generation(
        self,
        session_id: str,
        task: str,
        prompt: GeneratedPrompt,
        user_id: str | None = None,
    ) -> str:
        """Store a finished prompt (redacted) and return its row id."""
        pool = self._check_pool()
        generation_id = prompt.id or uuid.uuid4().hex
        async with pool.acquire() as conn:
            try:
                await conn.execute(
                    """
                    INSERT INTO generations (id, session_id, user_id, task, label, body, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        generation_id,
                        session_id,
                        user_id,
                        redact_for_storage(task),
                        redact_for_storage(prompt.label),
                        redact_for_storage(prompt.body),
                        datetime.now().isoformat(),
                    ),
                )
                await conn.commit()
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in record_generation: %s", e, exc_info=True)
                raise
        return generation_id

    async def list_history(
        self, session_id: str, limit: int = 20, offset: int = 0
    ) -> list[HistoryItem]:
        """Recent generations for a session within the retention window, newest first."""
        pool = self._check_pool()
        created_after = (datetime.now() - timedelta(days=HISTORY_RETENTION_DAYS)).isoformat()
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                """
                SELECT id, task, label, body, created_at FROM generations
                WHERE session_id = ? AND created_at >= ?
                ORDER BY created_at DESC
                LIMIT ? OFFSET ?
                """,
                (session_id, created_after, limit, offset),
            )
            rows = await cursor.fetchall()
        return [
            HistoryItem(
                id=row["id"],
                task=row["task"],
                label=row["label"],
                body=row["body"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    # Preferences
    async def save_preferences(self, scope: str, preferences: Preferences) -> None:
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                await conn.execute(
                    """
                    INSERT INTO preferences (scope, preferences_json, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(scope) DO UPDATE SET
                        preferences_json = excluded.preferences_json,
                        updated_at = excluded.updated_at
                    """,
                    (scope, preferences.model_dump_json(), datetime.now().isoformat()),
                )
                await conn.commit()
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in save_preferences: %s", e, exc_info=True)
                raise

    async def load_preferences(self, scope: str) -> Preferences | None:
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                "SELECT preferences_json FROM preferences WHERE scope = ?", (scope,)
            )
            row = await cursor.fetchone()
        if not row:
            return None
        return Preferences.model_validate_json(row["preferences_json"])

    # Event log
    async def save_events_batch(self, events: list[dict]) -> int:
        """Append analytics events in one transaction."""
        if not events:
            return 0

        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                await conn.executemany(
                    """
                    INSERT INTO events (session_id, event_type, payload_json, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    [
                        (
                            e.get("session_id"),
                            e.get("event_type"),
                            e.get("payload_json"),
                            e.get("created_at", datetime.now().isoformat()),
                        )
                        for e in events
                    ],
                )
                await conn.commit()
                return len(events)
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in save_events_batch: %s", e, exc_info=True)
                raise

    async def get_events(self, session_id: str, event_type: str | None = None) -> list[dict]:
        """Events for a session in insertion order, payloads decoded."""
        pool = self._check_pool()
        query = "SELECT * FROM events WHERE session_id = ?"
        params = [session_id]
        if event_type:
            query += " AND event_type = ?"
            params.append(event_type)
        query += " ORDER BY id"

        async with pool.acquire() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        results = []
        for row in rows:
            item = dict(row)
            item["payload"] = json.loads(item.pop("payload_json") or "{}")
            results.append(item)
        return results
