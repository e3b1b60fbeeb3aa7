# lembrete - WhatsApp Reminder Bot
# Copyright (c) 2025-2026 Slash Daemon slashdaemon@protonmail.com
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, version 3 of the License.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.
#
# Commercial licensing: [slashdaemon@protonmail.com]

"""
Reminder Store Module

Persistence for reminders. PostgresReminderStore is the production store
(asyncpg); InMemoryReminderStore backs local runs without DATABASE_URL and
the test suite.

Every mutation is scoped to a single reminder row (or a single series for
cancel_series). Mutations that must not touch an already delivered or
cancelled reminder are conditional on is_sent = FALSE and report whether
they took effect.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Optional

import asyncpg

from .models import (
    CANCELED_BY_USER,
    SERIES_CANCELED,
    RecurrenceType,
    Reminder,
    ReminderStatus,
    describe_error,
)

logger = logging.getLogger("lembrete.reminders.store")

REMINDER_COLUMNS = """
    id, phone, message, scheduled_at, is_sent, sent_at, retry_count,
    last_error, status, is_recurring, recurrence_type, recurrence_pattern,
    series_id, parent_id, end_date, claimed_at, created_at
"""

# Columns a caller may change through update()
UPDATABLE_FIELDS = {"message", "scheduled_at"}


class StoreError(Exception):
    """Raised when the underlying database operation fails."""

    pass


class ReminderStore:
    """Interface consumed by the lifecycle manager, engine and scheduler."""

    async def create(
        self,
        phone: str,
        message: str,
        scheduled_at: datetime,
        is_recurring: bool = False,
        recurrence_type: Optional[RecurrenceType] = None,
        recurrence_pattern: Optional[str] = None,
        series_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        end_date: Optional[datetime] = None,
    ) -> Reminder:
        raise NotImplementedError

    async def get(self, reminder_id: str) -> Optional[Reminder]:
        raise NotImplementedError

    async def find_pending(
        self, phone: str, limit: int = 20, max_retries: int = 3
    ) -> list[Reminder]:
        """Pending list: not sent, not retry-exhausted, ordered by scheduled_at."""
        raise NotImplementedError

    async def find_due(
        self, now: datetime, limit: int = 100, max_retries: int = 3
    ) -> list[Reminder]:
        raise NotImplementedError

    async def update(self, reminder_id: str, **fields: Any) -> Optional[Reminder]:
        """Update message/scheduled_at of a still-pending reminder."""
        raise NotImplementedError

    async def cancel(
        self, reminder_id: str, now: datetime, reason: str = CANCELED_BY_USER
    ) -> bool:
        raise NotImplementedError

    async def cancel_series(self, series_id: str, now: datetime) -> int:
        raise NotImplementedError

    async def claim(self, reminder_id: str, now: datetime, ttl_seconds: int = 300) -> bool:
        """Mark a reminder in-flight; False if already sent or claimed."""
        raise NotImplementedError

    async def mark_sent(self, reminder_id: str, now: datetime) -> bool:
        """Record delivery; False if the reminder was cancelled meanwhile."""
        raise NotImplementedError

    async def record_failure(
        self, reminder_id: str, error: Any, max_retries: int = 3
    ) -> Optional[Reminder]:
        raise NotImplementedError

    async def find_recently_sent_recurring(self, since: datetime) -> list[Reminder]:
        raise NotImplementedError

    async def find_series_occurrence(
        self, series_id: str, start: datetime, end: datetime
    ) -> Optional[Reminder]:
        """First occurrence of a series scheduled in [start, end)."""
        raise NotImplementedError


class PostgresReminderStore(ReminderStore):
    """
    asyncpg-backed reminder store.

    Timestamps are TIMESTAMP WITHOUT TIME ZONE holding literal-clock digits.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        """
        Initialize the store.

        Args:
            db_pool: asyncpg connection pool
        """
        self.db = db_pool

    async def _fetchrow(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        try:
            return await self.db.fetchrow(query, *args)
        except asyncpg.PostgresError as e:
            raise StoreError(str(e)) from e

    async def _fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        try:
            return await self.db.fetch(query, *args)
        except asyncpg.PostgresError as e:
            raise StoreError(str(e)) from e

    async def create(
        self,
        phone: str,
        message: str,
        scheduled_at: datetime,
        is_recurring: bool = False,
        recurrence_type: Optional[RecurrenceType] = None,
        recurrence_pattern: Optional[str] = None,
        series_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        end_date: Optional[datetime] = None,
    ) -> Reminder:
        row = await self._fetchrow(
            f"""
            INSERT INTO reminders (
                id, phone, message, scheduled_at, status, is_recurring,
                recurrence_type, recurrence_pattern, series_id, parent_id, end_date
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            RETURNING {REMINDER_COLUMNS}
            """,
            str(uuid.uuid4()),
            phone,
            message,
            scheduled_at,
            ReminderStatus.PENDING.value,
            is_recurring,
            recurrence_type.value if recurrence_type else None,
            recurrence_pattern,
            series_id,
            parent_id,
            end_date,
        )

        reminder = Reminder.from_record(row)
        logger.info(
            f"Created reminder {reminder.id} for {phone}: "
            f"at={scheduled_at.isoformat()}, recurring={is_recurring}"
        )
        return reminder

    async def get(self, reminder_id: str) -> Optional[Reminder]:
        row = await self._fetchrow(
            f"SELECT {REMINDER_COLUMNS} FROM reminders WHERE id = $1",
            reminder_id,
        )
        return Reminder.from_record(row) if row else None

    async def find_pending(
        self, phone: str, limit: int = 20, max_retries: int = 3
    ) -> list[Reminder]:
        rows = await self._fetch(
            f"""
            SELECT {REMINDER_COLUMNS}
            FROM reminders
            WHERE phone = $1
              AND is_sent = FALSE
              AND (retry_count < $2 OR retry_count IS NULL)
            ORDER BY scheduled_at ASC, created_at ASC, id ASC
            LIMIT $3
            """,
            phone,
            max_retries,
            limit,
        )
        return [Reminder.from_record(row) for row in rows]

    async def find_due(
        self, now: datetime, limit: int = 100, max_retries: int = 3
    ) -> list[Reminder]:
        rows = await self._fetch(
            f"""
            SELECT {REMINDER_COLUMNS}
            FROM reminders
            WHERE scheduled_at <= $1
              AND is_sent = FALSE
              AND (retry_count < $2 OR retry_count IS NULL)
            ORDER BY scheduled_at ASC
            LIMIT $3
            """,
            now,
            max_retries,
            limit,
        )
        return [Reminder.from_record(row) for row in rows]

    async def update(self, reminder_id: str, **fields: Any) -> Optional[Reminder]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        if not fields:
            return await self.get(reminder_id)

        names = sorted(fields)
        assignments = ", ".join(f"{name} = ${i + 2}" for i, name in enumerate(names))
        row = await self._fetchrow(
            f"""
            UPDATE reminders
            SET {assignments}
            WHERE id = $1 AND is_sent = FALSE
            RETURNING {REMINDER_COLUMNS}
            """,
            reminder_id,
            *[fields[name] for name in names],
        )
        return Reminder.from_record(row) if row else None

    async def cancel(
        self, reminder_id: str, now: datetime, reason: str = CANCELED_BY_USER
    ) -> bool:
        row = await self._fetchrow(
            """
            UPDATE reminders
            SET is_sent = TRUE, sent_at = $2, last_error = $3,
                status = $4, claimed_at = NULL
            WHERE id = $1 AND is_sent = FALSE
            RETURNING id
            """,
            reminder_id,
            now,
            reason,
            ReminderStatus.CANCELED.value,
        )
        return row is not None

    async def cancel_series(self, series_id: str, now: datetime) -> int:
        rows = await self._fetch(
            """
            UPDATE reminders
            SET is_sent = TRUE, sent_at = $2, last_error = $3,
                status = $4, claimed_at = NULL
            WHERE series_id = $1 AND is_sent = FALSE
            RETURNING id
            """,
            series_id,
            now,
            SERIES_CANCELED,
            ReminderStatus.CANCELED.value,
        )
        return len(rows)

    async def claim(self, reminder_id: str, now: datetime, ttl_seconds: int = 300) -> bool:
        row = await self._fetchrow(
            """
            UPDATE reminders
            SET claimed_at = $2
            WHERE id = $1
              AND is_sent = FALSE
              AND (claimed_at IS NULL OR claimed_at < $3)
            RETURNING id
            """,
            reminder_id,
            now,
            now - timedelta(seconds=ttl_seconds),
        )
        return row is not None

    async def mark_sent(self, reminder_id: str, now: datetime) -> bool:
        row = await self._fetchrow(
            """
            UPDATE reminders
            SET is_sent = TRUE, sent_at = $2, retry_count = 0,
                status = $3, claimed_at = NULL
            WHERE id = $1 AND is_sent = FALSE
            RETURNING id
            """,
            reminder_id,
            now,
            ReminderStatus.SENT.value,
        )
        return row is not None

    async def record_failure(
        self, reminder_id: str, error: Any, max_retries: int = 3
    ) -> Optional[Reminder]:
        row = await self._fetchrow(
            f"""
            UPDATE reminders
            SET retry_count = COALESCE(retry_count, 0) + 1,
                last_error = $2,
                claimed_at = NULL,
                status = CASE
                    WHEN COALESCE(retry_count, 0) + 1 >= $3 THEN $4
                    ELSE status
                END
            WHERE id = $1 AND is_sent = FALSE
            RETURNING {REMINDER_COLUMNS}
            """,
            reminder_id,
            describe_error(error),
            max_retries,
            ReminderStatus.EXHAUSTED.value,
        )
        return Reminder.from_record(row) if row else None

    async def find_recently_sent_recurring(self, since: datetime) -> list[Reminder]:
        rows = await self._fetch(
            f"""
            SELECT {REMINDER_COLUMNS}
            FROM reminders
            WHERE is_recurring = TRUE
              AND status = $2
              AND sent_at >= $1
              AND recurrence_type IS NOT NULL
            ORDER BY sent_at ASC
            """,
            since,
            ReminderStatus.SENT.value,
        )
        return [Reminder.from_record(row) for row in rows]

    async def find_series_occurrence(
        self, series_id: str, start: datetime, end: datetime
    ) -> Optional[Reminder]:
        row = await self._fetchrow(
            f"""
            SELECT {REMINDER_COLUMNS}
            FROM reminders
            WHERE series_id = $1 AND scheduled_at >= $2 AND scheduled_at < $3
            ORDER BY scheduled_at ASC
            LIMIT 1
            """,
            series_id,
            start,
            end,
        )
        return Reminder.from_record(row) if row else None


class InMemoryReminderStore(ReminderStore):
    """
    Process-local store with the same filtering and ordering contract.

    Used when no DATABASE_URL is configured and by the test suite.
    Rows are stored as Reminder dataclasses and copied on the way out.
    """

    def __init__(self):
        self.rows: dict[str, Reminder] = {}
        self._sequence = 0

    def _copy(self, reminder: Reminder) -> Reminder:
        return replace(reminder)

    def _is_pending(self, reminder: Reminder, max_retries: int) -> bool:
        return not reminder.is_sent and (reminder.retry_count or 0) < max_retries

    async def create(
        self,
        phone: str,
        message: str,
        scheduled_at: datetime,
        is_recurring: bool = False,
        recurrence_type: Optional[RecurrenceType] = None,
        recurrence_pattern: Optional[str] = None,
        series_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        end_date: Optional[datetime] = None,
    ) -> Reminder:
        self._sequence += 1
        reminder = Reminder(
            id=str(uuid.uuid4()),
            phone=phone,
            message=message,
            scheduled_at=scheduled_at,
            is_recurring=is_recurring,
            recurrence_type=recurrence_type,
            recurrence_pattern=recurrence_pattern,
            series_id=series_id,
            parent_id=parent_id,
            end_date=end_date,
            created_at=datetime.min + timedelta(microseconds=self._sequence),
        )
        self.rows[reminder.id] = reminder
        return self._copy(reminder)

    async def get(self, reminder_id: str) -> Optional[Reminder]:
        reminder = self.rows.get(reminder_id)
        return self._copy(reminder) if reminder else None

    async def find_pending(
        self, phone: str, limit: int = 20, max_retries: int = 3
    ) -> list[Reminder]:
        pending = [
            r for r in self.rows.values()
            if r.phone == phone and self._is_pending(r, max_retries)
        ]
        pending.sort(key=lambda r: (r.scheduled_at, r.created_at, r.id))
        return [self._copy(r) for r in pending[:limit]]

    async def find_due(
        self, now: datetime, limit: int = 100, max_retries: int = 3
    ) -> list[Reminder]:
        due = [
            r for r in self.rows.values()
            if r.scheduled_at <= now and self._is_pending(r, max_retries)
        ]
        due.sort(key=lambda r: (r.scheduled_at, r.created_at))
        return [self._copy(r) for r in due[:limit]]

    async def update(self, reminder_id: str, **fields: Any) -> Optional[Reminder]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        reminder = self.rows.get(reminder_id)
        if reminder is None or reminder.is_sent:
            return None
        for name, value in fields.items():
            setattr(reminder, name, value)
        return self._copy(reminder)

    async def cancel(
        self, reminder_id: str, now: datetime, reason: str = CANCELED_BY_USER
    ) -> bool:
        reminder = self.rows.get(reminder_id)
        if reminder is None or reminder.is_sent:
            return False
        reminder.is_sent = True
        reminder.sent_at = now
        reminder.last_error = reason
        reminder.status = ReminderStatus.CANCELED
        reminder.claimed_at = None
        return True

    async def cancel_series(self, series_id: str, now: datetime) -> int:
        count = 0
        for reminder in self.rows.values():
            if reminder.series_id == series_id and not reminder.is_sent:
                reminder.is_sent = True
                reminder.sent_at = now
                reminder.last_error = SERIES_CANCELED
                reminder.status = ReminderStatus.CANCELED
                reminder.claimed_at = None
                count += 1
        return count

    async def claim(self, reminder_id: str, now: datetime, ttl_seconds: int = 300) -> bool:
        reminder = self.rows.get(reminder_id)
        if reminder is None or reminder.is_sent:
            return False
        stale_before = now - timedelta(seconds=ttl_seconds)
        if reminder.claimed_at is not None and reminder.claimed_at >= stale_before:
            return False
        reminder.claimed_at = now
        return True

    async def mark_sent(self, reminder_id: str, now: datetime) -> bool:
        reminder = self.rows.get(reminder_id)
        if reminder is None or reminder.is_sent:
            return False
        reminder.is_sent = True
        reminder.sent_at = now
        reminder.retry_count = 0
        reminder.status = ReminderStatus.SENT
        reminder.claimed_at = None
        return True

    async def record_failure(
        self, reminder_id: str, error: Any, max_retries: int = 3
    ) -> Optional[Reminder]:
        reminder = self.rows.get(reminder_id)
        if reminder is None or reminder.is_sent:
            return None
        reminder.retry_count = (reminder.retry_count or 0) + 1
        reminder.last_error = describe_error(error)
        reminder.claimed_at = None
        if reminder.retry_count >= max_retries:
            reminder.status = ReminderStatus.EXHAUSTED
        return self._copy(reminder)

    async def find_recently_sent_recurring(self, since: datetime) -> list[Reminder]:
        sent = [
            r for r in self.rows.values()
            if r.is_recurring
            and r.status is ReminderStatus.SENT
            and r.sent_at is not None
            and r.sent_at >= since
            and r.recurrence_type is not None
        ]
        sent.sort(key=lambda r: r.sent_at)
        return [self._copy(r) for r in sent]

    async def find_series_occurrence(
        self, series_id: str, start: datetime, end: datetime
    ) -> Optional[Reminder]:
        matches = sorted(
            (
                r for r in self.rows.values()
                if r.series_id == series_id and start <= r.scheduled_at < end
            ),
            key=lambda r: r.scheduled_at,
        )
        return self._copy(matches[0]) if matches else None
