"""SQLite persistence for reminders, plus the read-only task lookup.

Calls run in a worker thread so every persistence call is an await point
for the event loop. A single connection is shared under a lock.
"""

import asyncio
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from logger import logger
from .errors import NotFound, PersistenceFailure
from .types import Reminder, ReminderType, ensure_utc

SORTABLE_COLUMNS = {"scheduled_at", "created_at", "updated_at", "title"}


def _to_db(value: datetime) -> str:
    return ensure_utc(value).isoformat(timespec="microseconds")


def _from_db(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value))


def _row_to_reminder(row: sqlite3.Row) -> Reminder:
    return Reminder(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        message=row["message"] or "",
        scheduled_at=_from_db(row["scheduled_at"]),
        type=ReminderType(row["type"]),
        recurring=bool(row["recurring"]),
        recurring_pattern=row["recurring_pattern"],
        triggered=bool(row["triggered"]),
        snoozed=bool(row["snoozed"]),
        snooze_count=row["snooze_count"],
        task_id=row["task_id"],
        created_at=_from_db(row["created_at"]),
        updated_at=_from_db(row["updated_at"]),
    )


class ReminderStore:
    """Reminder rows scoped by user_id."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection with WAL mode."""
        if self._connection is not None:
            return self._connection

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,  # Used from asyncio.to_thread workers
            timeout=10.0
        )
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA journal_mode=WAL")
        self._connection.execute("PRAGMA busy_timeout=5000")
        self._connection.execute("PRAGMA foreign_keys=ON")
        _init_schema(self._connection)

        logger.info(f"Reminder store initialized: {self.db_path}")
        return self._connection

    def close(self) -> None:
        """Close the connection (reopened lazily on next use)."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    @contextmanager
    def _transaction(self):
        """Serialized transaction; sqlite errors surface as PersistenceFailure."""
        with self._lock:
            try:
                conn = self._get_connection()
            except sqlite3.Error as e:
                raise PersistenceFailure(f"Cannot open reminder store: {e}") from e
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceFailure(str(e)) from e
            except Exception:
                conn.rollback()
                raise

    # ------------------------------------------------------------
    # Sync implementations (run via asyncio.to_thread)
    # ------------------------------------------------------------

    def _find_by_id(self, reminder_id: str, user_id: str) -> Reminder:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM reminders WHERE id = ? AND user_id = ?",
                (reminder_id, user_id)
            ).fetchone()
        if row is None:
            raise NotFound(f"Reminder {reminder_id} not found")
        return _row_to_reminder(row)

    def _create(self, fields: dict) -> Reminder:
        now = datetime.now(timezone.utc)
        reminder = Reminder(
            id=fields.get("id") or f"rem_{uuid.uuid4().hex}",
            user_id=fields["user_id"],
            title=fields["title"],
            message=fields.get("message") or "",
            scheduled_at=ensure_utc(fields["scheduled_at"]),
            type=ReminderType(fields.get("type") or ReminderType.PUSH),
            recurring=bool(fields.get("recurring", False)),
            recurring_pattern=fields.get("recurring_pattern"),
            task_id=fields.get("task_id"),
            created_at=now,
            updated_at=now,
        )
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO reminders
                (id, user_id, title, message, scheduled_at, type, recurring,
                 recurring_pattern, triggered, snoozed, snooze_count, task_id,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, 0, 0, ?, ?, ?)
                """,
                (
                    reminder.id, reminder.user_id, reminder.title, reminder.message,
                    _to_db(reminder.scheduled_at), reminder.type.value,
                    int(reminder.recurring), reminder.recurring_pattern,
                    reminder.task_id, _to_db(now), _to_db(now),
                )
            )
        logger.debug(f"Reminder {reminder.id} stored for user {reminder.user_id}")
        return reminder

    def _update(self, reminder_id: str, fields: dict) -> Reminder:
        columns = {}
        for key, value in fields.items():
            if isinstance(value, datetime):
                value = _to_db(value)
            elif isinstance(value, ReminderType):
                value = value.value
            elif isinstance(value, bool):
                value = int(value)
            columns[key] = value
        columns["updated_at"] = _to_db(datetime.now(timezone.utc))

        assignments = ", ".join(f"{column} = ?" for column in columns)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE reminders SET {assignments} WHERE id = ?",
                (*columns.values(), reminder_id)
            )
            if cursor.rowcount == 0:
                raise NotFound(f"Reminder {reminder_id} not found")
            row = conn.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()
        return _row_to_reminder(row)

    def _delete(self, reminder_id: str) -> None:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM reminders WHERE id = ?", (reminder_id,))
            if cursor.rowcount == 0:
                raise NotFound(f"Reminder {reminder_id} not found")

    def _list_for_user(
        self,
        user_id: str,
        triggered: Optional[bool],
        reminder_type: Optional[str],
        upcoming: bool,
        task_id: Optional[str],
        now: Optional[datetime],
        sort_by: str,
        sort_order: str,
        page: int,
        limit: int,
    ) -> tuple[list[Reminder], int]:
        where = ["user_id = ?"]
        params: list = [user_id]

        if triggered is not None:
            where.append("triggered = ?")
            params.append(int(triggered))
        if reminder_type:
            where.append("type = ?")
            params.append(reminder_type.upper())
        if task_id:
            where.append("task_id = ?")
            params.append(task_id)
        if upcoming:
            where.append("scheduled_at >= ? AND triggered = 0")
            params.append(_to_db(now or datetime.now(timezone.utc)))

        if sort_by not in SORTABLE_COLUMNS:
            sort_by = "scheduled_at"
        direction = "DESC" if sort_order.lower() == "desc" else "ASC"
        clause = " AND ".join(where)

        with self._transaction() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM reminders WHERE {clause}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM reminders WHERE {clause} "
                f"ORDER BY {sort_by} {direction} LIMIT ? OFFSET ?",
                (*params, limit, (page - 1) * limit)
            ).fetchall()
        return [_row_to_reminder(row) for row in rows], total

    def _get_pending(self) -> list[Reminder]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM reminders WHERE triggered = 0 ORDER BY scheduled_at ASC"
            ).fetchall()
        return [_row_to_reminder(row) for row in rows]

    def _find_task(self, task_id: str, user_id: str) -> Optional[dict]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, user_id, title, completed FROM tasks WHERE id = ? AND user_id = ?",
                (task_id, user_id)
            ).fetchone()
        return dict(row) if row else None

    # ------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------

    async def find_by_id(self, reminder_id: str, user_id: str) -> Reminder:
        """Get a reminder owned by user_id.

        Raises:
            NotFound: No row for this id + user pair
        """
        return await asyncio.to_thread(self._find_by_id, reminder_id, user_id)

    async def create(self, fields: dict) -> Reminder:
        """Insert a reminder. `fields` must carry user_id, title and scheduled_at."""
        return await asyncio.to_thread(self._create, fields)

    async def update(self, reminder_id: str, fields: dict) -> Reminder:
        """Apply `fields` to a reminder and return the stored result.

        Raises:
            NotFound: The row no longer exists
        """
        return await asyncio.to_thread(self._update, reminder_id, fields)

    async def delete(self, reminder_id: str) -> None:
        """Delete a reminder.

        Raises:
            NotFound: The row no longer exists
        """
        await asyncio.to_thread(self._delete, reminder_id)

    async def list_for_user(
        self,
        user_id: str,
        *,
        triggered: Optional[bool] = None,
        reminder_type: Optional[str] = None,
        upcoming: bool = False,
        task_id: Optional[str] = None,
        now: Optional[datetime] = None,
        sort_by: str = "scheduled_at",
        sort_order: str = "asc",
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Reminder], int]:
        """Filtered, paginated reminders for a user.

        Returns:
            (reminders on this page, total matching rows)
        """
        return await asyncio.to_thread(
            self._list_for_user, user_id, triggered, reminder_type, upcoming,
            task_id, now, sort_by, sort_order, page, limit
        )

    async def get_pending(self) -> list[Reminder]:
        """All non-triggered reminders across users (for startup reload)."""
        return await asyncio.to_thread(self._get_pending)


class TaskLookup:
    """Read-only view of the tasks table, used to validate task_id on create."""

    def __init__(self, store: ReminderStore):
        self._store = store

    async def find_task_by_id(self, task_id: str, user_id: str) -> Optional[dict]:
        """Return the task if it exists and belongs to user_id, else None."""
        return await asyncio.to_thread(self._store._find_task, task_id, user_id)


def _init_schema(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            completed INTEGER DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS reminders (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT DEFAULT '',
            scheduled_at TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'PUSH',
            recurring INTEGER DEFAULT 0,
            recurring_pattern TEXT,
            triggered INTEGER DEFAULT 0,
            snoozed INTEGER DEFAULT 0,
            snooze_count INTEGER DEFAULT 0,
            task_id TEXT REFERENCES tasks(id) ON DELETE SET NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_reminders_user ON reminders(user_id);
        CREATE INDEX IF NOT EXISTS idx_reminders_scheduled ON reminders(scheduled_at);
        CREATE INDEX IF NOT EXISTS idx_reminders_triggered ON reminders(triggered);
    """)
    conn.commit()
