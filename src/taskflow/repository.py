"""SQLite-backed stores for tasks, notifications and device tokens."""

from __future__ import annotations

import datetime
import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional

import aiosqlite

from .errors import StoreError
from .notifications.models import (
    DeviceToken,
    DeviceType,
    Notification,
    NotificationPayload,
    NotificationType,
)
from .tasks.models import RepeatFrequency, Task, TaskPriority, TaskStatus
from .utils.datetime_utils import format_timestamp, parse_timestamp, utc_now

DEFAULT_MAX_BATCH_OPS = 500

_TASK_COLUMNS = (
    "id",
    "owner_id",
    "title",
    "description",
    "tags",
    "priority",
    "start_date",
    "start_time",
    "due_date",
    "is_repeating",
    "repeat_frequency",
    "repeat_end_date",
    "series_id",
    "status",
    "completed",
    "completed_at",
    "is_deleted",
    "deleted_occurrences",
    "created_at",
    "updated_at",
)
_NOTIFICATION_COLUMNS = (
    "notification_id",
    "owner_id",
    "task_id",
    "type",
    "scheduled_for",
    "payload",
    "sent",
    "sent_at",
    "retry_count",
    "error",
    "created_at",
)
_DEVICE_TOKEN_COLUMNS = (
    "owner_id",
    "token",
    "device_type",
    "is_active",
    "created_at",
    "last_used",
)


def _encode(value: Any) -> Any:
    """Convert a model value into its SQLite column representation."""

    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime.datetime):
        return format_timestamp(value)
    if isinstance(value, (set, frozenset)):
        return json.dumps(sorted(value))
    if isinstance(value, NotificationPayload):
        return json.dumps(value.to_dict())
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value)
    return value


def _decode_json(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _encode_fields(fields: dict[str, Any], allowed: Iterable[str]) -> dict[str, Any]:
    allowed_set = set(allowed)
    unknown = set(fields) - allowed_set
    if unknown:
        raise ValueError(f"Unknown column(s): {', '.join(sorted(unknown))}")
    return {key: _encode(value) for key, value in fields.items()}


def _task_values(task: Task) -> dict[str, Any]:
    return {column: _encode(getattr(task, column)) for column in _TASK_COLUMNS}


def _notification_values(notification: Notification) -> dict[str, Any]:
    return {
        column: _encode(getattr(notification, column))
        for column in _NOTIFICATION_COLUMNS
    }


def _insert_sql(table: str, columns: Iterable[str], *, verb: str) -> str:
    names = list(columns)
    placeholders = ", ".join(f":{name}" for name in names)
    return f"{verb} INTO {table} ({', '.join(names)}) VALUES ({placeholders})"


@dataclass(slots=True)
class _BatchOp:
    sql: str
    params: dict[str, Any]
    created_key: Optional[str] = None


@dataclass
class WriteBatch:
    """Write operations staged for one atomic commit.

    After ``TaskflowRepository.commit`` the ``created`` list holds the keys of
    conditional creates that actually inserted a row.
    """

    _ops: list[_BatchOp] = field(default_factory=list)
    created: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self._ops)

    # Tasks

    def set_task(self, task: Task) -> None:
        self._ops.append(
            _BatchOp(
                _insert_sql("tasks", _TASK_COLUMNS, verb="INSERT OR REPLACE"),
                _task_values(task),
            )
        )

    def create_task_if_absent(self, task: Task) -> None:
        self._ops.append(
            _BatchOp(
                _insert_sql("tasks", _TASK_COLUMNS, verb="INSERT OR IGNORE"),
                _task_values(task),
                created_key=task.id,
            )
        )

    def update_task(self, owner_id: str, task_id: str, **fields: Any) -> None:
        values = _encode_fields(fields, _TASK_COLUMNS)
        assignments = ", ".join(f"{name} = :{name}" for name in values)
        self._ops.append(
            _BatchOp(
                f"UPDATE tasks SET {assignments} "
                "WHERE id = :_key_id AND owner_id = :_key_owner",
                {**values, "_key_id": task_id, "_key_owner": owner_id},
            )
        )

    # Notifications

    def set_notification(self, notification: Notification) -> None:
        self._ops.append(
            _BatchOp(
                _insert_sql(
                    "notifications", _NOTIFICATION_COLUMNS, verb="INSERT OR REPLACE"
                ),
                _notification_values(notification),
            )
        )

    def update_notification(self, notification_id: str, **fields: Any) -> None:
        values = _encode_fields(fields, _NOTIFICATION_COLUMNS)
        assignments = ", ".join(f"{name} = :{name}" for name in values)
        self._ops.append(
            _BatchOp(
                f"UPDATE notifications SET {assignments} "
                "WHERE notification_id = :_key_id",
                {**values, "_key_id": notification_id},
            )
        )

    def delete_notification(self, notification_id: str) -> None:
        self._ops.append(
            _BatchOp(
                "DELETE FROM notifications WHERE notification_id = :_key_id",
                {"_key_id": notification_id},
            )
        )

    # Device tokens

    def update_device_token(self, owner_id: str, token: str, **fields: Any) -> None:
        values = _encode_fields(fields, _DEVICE_TOKEN_COLUMNS)
        assignments = ", ".join(f"{name} = :{name}" for name in values)
        self._ops.append(
            _BatchOp(
                f"UPDATE device_tokens SET {assignments} "
                "WHERE owner_id = :_key_owner AND token = :_key_token",
                {**values, "_key_owner": owner_id, "_key_token": token},
            )
        )


class TaskflowRepository:
    """Persist and query tasks, scheduled notifications and device tokens."""

    def __init__(
        self,
        database_path: Path,
        *,
        max_batch_ops: int = DEFAULT_MAX_BATCH_OPS,
    ):
        self._path = database_path
        self._max_batch_ops = max(1, max_batch_ops)
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                tags TEXT NOT NULL DEFAULT '[]',
                priority TEXT NOT NULL DEFAULT 'medium',
                start_date TEXT NOT NULL,
                start_time TEXT,
                due_date TEXT,
                is_repeating INTEGER NOT NULL DEFAULT 0,
                repeat_frequency TEXT,
                repeat_end_date TEXT,
                series_id TEXT,
                status TEXT NOT NULL DEFAULT 'todo',
                completed INTEGER NOT NULL DEFAULT 0,
                completed_at TEXT,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                deleted_occurrences TEXT NOT NULL DEFAULT '[]',
                created_at TEXT,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS notifications (
                notification_id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                task_id TEXT NOT NULL,
                type TEXT NOT NULL,
                scheduled_for TEXT NOT NULL,
                payload TEXT NOT NULL,
                sent INTEGER NOT NULL DEFAULT 0,
                sent_at TEXT,
                retry_count INTEGER NOT NULL DEFAULT 0,
                error TEXT,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS device_tokens (
                owner_id TEXT NOT NULL,
                token TEXT NOT NULL,
                device_type TEXT NOT NULL DEFAULT 'web',
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT,
                last_used TEXT,
                PRIMARY KEY (owner_id, token)
            );

            CREATE INDEX IF NOT EXISTS idx_tasks_owner ON tasks(owner_id);
            CREATE INDEX IF NOT EXISTS idx_tasks_occurrence
                ON tasks(owner_id, title, start_date);
            CREATE INDEX IF NOT EXISTS idx_notifications_due
                ON notifications(sent, scheduled_for);
            CREATE INDEX IF NOT EXISTS idx_notifications_task
                ON notifications(owner_id, task_id);
            CREATE INDEX IF NOT EXISTS idx_device_tokens_token
                ON device_tokens(token);
            """
        )
        await self._connection.commit()

    async def close(self) -> None:
        """Close the database connection."""

        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def batch(self) -> WriteBatch:
        return WriteBatch()

    async def commit(self, batch: WriteBatch) -> int:
        """Apply a batch, one transaction per ``max_batch_ops`` operations.

        A failing chunk is rolled back and raised as ``StoreError``; chunks
        committed before it stay committed.
        """

        assert self._connection is not None

        applied = 0
        ops = batch._ops
        for start in range(0, len(ops), self._max_batch_ops):
            chunk = ops[start : start + self._max_batch_ops]
            created: list[str] = []
            try:
                for op in chunk:
                    cursor = await self._connection.execute(op.sql, op.params)
                    if op.created_key is not None and cursor.rowcount == 1:
                        created.append(op.created_key)
                    await cursor.close()
                await self._connection.commit()
            except sqlite3.Error as exc:
                await self._connection.rollback()
                raise StoreError(
                    f"Batch commit failed after {applied} operation(s): {exc}"
                ) from exc
            applied += len(chunk)
            batch.created.extend(created)
        return applied

    async def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[Any]:
        assert self._connection is not None
        try:
            cursor = await self._connection.execute(sql, tuple(params))
            rows = await cursor.fetchall()
            await cursor.close()
        except sqlite3.Error as exc:
            raise StoreError(f"Query failed: {exc}") from exc
        return list(rows)

    async def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> Any:
        rows = await self._fetchall(sql, params)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _row_to_task(self, row: aiosqlite.Row) -> Task:
        return Task(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            description=row["description"] or "",
            tags=set(_decode_json(row["tags"], [])),
            priority=TaskPriority(row["priority"]),
            start_date=row["start_date"],
            start_time=row["start_time"],
            due_date=parse_timestamp(row["due_date"]),
            is_repeating=bool(row["is_repeating"]),
            repeat_frequency=(
                RepeatFrequency(row["repeat_frequency"])
                if row["repeat_frequency"]
                else None
            ),
            repeat_end_date=row["repeat_end_date"],
            series_id=row["series_id"],
            status=TaskStatus(row["status"]),
            completed=bool(row["completed"]),
            completed_at=parse_timestamp(row["completed_at"]),
            is_deleted=bool(row["is_deleted"]),
            deleted_occurrences=set(_decode_json(row["deleted_occurrences"], [])),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    async def create_task(self, task: Task) -> Task:
        """Insert a task, assigning an id and timestamps when missing."""

        if not task.id:
            task.id = str(uuid.uuid4())
        now = utc_now()
        task.created_at = task.created_at or now
        task.updated_at = task.updated_at or now

        batch = self.batch()
        batch.set_task(task)
        await self.commit(batch)
        return task

    async def create_task_if_absent(self, task: Task) -> bool:
        """Insert a task unless a row with the same id already exists."""

        batch = self.batch()
        batch.create_task_if_absent(task)
        await self.commit(batch)
        return bool(batch.created)

    async def update_task_fields(
        self, owner_id: str, task_id: str, **fields: Any
    ) -> None:
        batch = self.batch()
        batch.update_task(owner_id, task_id, **fields)
        await self.commit(batch)

    async def get_task(self, owner_id: str, task_id: str) -> Task | None:
        row = await self._fetchone(
            "SELECT * FROM tasks WHERE owner_id = ? AND id = ?",
            (owner_id, task_id),
        )
        return self._row_to_task(row) if row is not None else None

    async def list_tasks(self, owner_id: str) -> list[Task]:
        """Return every task of an owner, soft-deleted rows included."""

        rows = await self._fetchall(
            "SELECT * FROM tasks WHERE owner_id = ? ORDER BY start_date ASC, id ASC",
            (owner_id,),
        )
        return [self._row_to_task(row) for row in rows]

    async def find_occurrence(
        self,
        owner_id: str,
        title: str,
        start_date: str,
        repeat_frequency: RepeatFrequency,
    ) -> Task | None:
        """Look up the repeating instance of a series on a given date."""

        row = await self._fetchone(
            """
            SELECT * FROM tasks
            WHERE owner_id = ?
              AND title = ?
              AND start_date = ?
              AND is_repeating = 1
              AND repeat_frequency = ?
            LIMIT 1
            """,
            (owner_id, title, start_date, repeat_frequency.value),
        )
        return self._row_to_task(row) if row is not None else None

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _row_to_notification(self, row: aiosqlite.Row) -> Notification:
        scheduled_for = parse_timestamp(row["scheduled_for"])
        if scheduled_for is None:
            raise StoreError(
                f"Notification {row['notification_id']} has no valid scheduled_for"
            )
        return Notification(
            notification_id=row["notification_id"],
            owner_id=row["owner_id"],
            task_id=row["task_id"],
            type=NotificationType(row["type"]),
            scheduled_for=scheduled_for,
            payload=NotificationPayload.from_dict(_decode_json(row["payload"], {})),
            sent=bool(row["sent"]),
            sent_at=parse_timestamp(row["sent_at"]),
            retry_count=int(row["retry_count"]),
            error=row["error"],
            created_at=parse_timestamp(row["created_at"]),
        )

    async def get_notification(self, notification_id: str) -> Notification | None:
        row = await self._fetchone(
            "SELECT * FROM notifications WHERE notification_id = ?",
            (notification_id,),
        )
        return self._row_to_notification(row) if row is not None else None

    async def list_notifications(self, owner_id: str) -> list[Notification]:
        rows = await self._fetchall(
            "SELECT * FROM notifications WHERE owner_id = ? ORDER BY scheduled_for ASC",
            (owner_id,),
        )
        return [self._row_to_notification(row) for row in rows]

    async def find_due_notifications(
        self, now: datetime.datetime, limit: int
    ) -> list[Notification]:
        """Cross-owner scan for unsent notifications scheduled up to ``now``."""

        rows = await self._fetchall(
            """
            SELECT * FROM notifications
            WHERE sent = 0 AND scheduled_for <= ?
            ORDER BY scheduled_for ASC
            LIMIT ?
            """,
            (format_timestamp(now), limit),
        )
        return [self._row_to_notification(row) for row in rows]

    async def find_unsent_for_task(
        self, owner_id: str, task_id: str
    ) -> list[Notification]:
        rows = await self._fetchall(
            """
            SELECT * FROM notifications
            WHERE owner_id = ? AND task_id = ? AND sent = 0
            """,
            (owner_id, task_id),
        )
        return [self._row_to_notification(row) for row in rows]

    async def find_expired_notifications(
        self, cutoff: datetime.datetime, limit: int
    ) -> list[Notification]:
        """Sent notifications whose ``sent_at`` is at or before ``cutoff``."""

        rows = await self._fetchall(
            """
            SELECT * FROM notifications
            WHERE sent = 1 AND sent_at IS NOT NULL AND sent_at <= ?
            ORDER BY sent_at ASC
            LIMIT ?
            """,
            (format_timestamp(cutoff), limit),
        )
        return [self._row_to_notification(row) for row in rows]

    # ------------------------------------------------------------------
    # Device tokens
    # ------------------------------------------------------------------

    def _row_to_device_token(self, row: aiosqlite.Row) -> DeviceToken:
        return DeviceToken(
            owner_id=row["owner_id"],
            token=row["token"],
            device_type=DeviceType(row["device_type"]),
            is_active=bool(row["is_active"]),
            created_at=parse_timestamp(row["created_at"]),
            last_used=parse_timestamp(row["last_used"]),
        )

    async def upsert_device_token(self, device_token: DeviceToken) -> DeviceToken:
        """Insert or replace the token row keyed by ``(owner_id, token)``."""

        assert self._connection is not None
        values = {
            column: _encode(getattr(device_token, column))
            for column in _DEVICE_TOKEN_COLUMNS
        }
        try:
            await self._connection.execute(
                _insert_sql(
                    "device_tokens", _DEVICE_TOKEN_COLUMNS, verb="INSERT OR REPLACE"
                ),
                values,
            )
            await self._connection.commit()
        except sqlite3.Error as exc:
            await self._connection.rollback()
            raise StoreError(f"Failed to store device token: {exc}") from exc
        return device_token

    async def get_device_token(self, owner_id: str, token: str) -> DeviceToken | None:
        row = await self._fetchone(
            "SELECT * FROM device_tokens WHERE owner_id = ? AND token = ?",
            (owner_id, token),
        )
        return self._row_to_device_token(row) if row is not None else None

    async def list_active_tokens(self, owner_id: str) -> list[DeviceToken]:
        rows = await self._fetchall(
            """
            SELECT * FROM device_tokens
            WHERE owner_id = ? AND is_active = 1
            ORDER BY created_at ASC
            """,
            (owner_id,),
        )
        return [self._row_to_device_token(row) for row in rows]

    async def find_tokens_by_value(self, token: str) -> list[DeviceToken]:
        """Cross-owner lookup of every row registered for a raw token."""

        rows = await self._fetchall(
            "SELECT * FROM device_tokens WHERE token = ?",
            (token,),
        )
        return [self._row_to_device_token(row) for row in rows]


__all__ = ["TaskflowRepository", "WriteBatch", "DEFAULT_MAX_BATCH_OPS"]
