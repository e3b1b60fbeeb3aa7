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
Event tracking for reminder usage and delivery health.

Events go to the analytics_events table. Phone numbers are never stored:
each event carries a salted SHA-256 of the number instead, which is
enough to count distinct users.

Usage:
    from analytics import track

    track("reminder_delivered", "reminder", phone="5521999999999",
          properties={"is_recurring": True})
"""

import asyncio
import hashlib
import json
import logging
import os
from typing import Any, Optional

import asyncpg

logger = logging.getLogger("lembrete.analytics")

CATEGORIES = {"command", "reminder", "error", "system"}

_pool: Optional[asyncpg.Pool] = None
_owns_pool = False
_pending: set[asyncio.Task] = set()
_enabled: bool = os.getenv("ANALYTICS_ENABLED", "true").lower() == "true"
_salt: str = os.getenv("ANALYTICS_SALT", "lembrete")


def init(pool: asyncpg.Pool) -> None:
    """Share the application's pool instead of opening a separate one."""
    global _pool, _owns_pool
    _pool = pool
    _owns_pool = False


def phone_hash(phone: Optional[str]) -> Optional[str]:
    """Salted hash of a phone number, stable across events."""
    if not phone:
        return None
    return hashlib.sha256(f"{_salt}:{phone}".encode()).hexdigest()[:32]


async def _connect() -> Optional[asyncpg.Pool]:
    global _pool, _owns_pool
    if _pool is not None:
        return _pool

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        return None

    try:
        _pool = await asyncpg.create_pool(database_url, min_size=1, max_size=2)
        _owns_pool = True
    except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
        logger.warning(f"Analytics disabled, could not connect: {e}")
        return None
    return _pool


async def track_async(
    event_name: str,
    event_category: str,
    phone: Optional[str] = None,
    properties: Optional[dict[str, Any]] = None,
) -> bool:
    """
    Record one event.

    Args:
        event_name: Event identifier, e.g. "reminder_delivered"
        event_category: One of CATEGORIES (anything else is filed as "system")
        phone: Phone the event relates to; stored only as a hash
        properties: Extra JSON-serializable data

    Returns:
        True if the row was written
    """
    if not _enabled:
        return False

    if event_category not in CATEGORIES:
        logger.debug(f"Unknown analytics category {event_category!r} for {event_name}")
        event_category = "system"

    pool = await _connect()
    if pool is None:
        return False

    try:
        await pool.execute(
            """
            INSERT INTO analytics_events (event_name, event_category, phone_hash, properties)
            VALUES ($1, $2, $3, $4::jsonb)
            """,
            event_name,
            event_category,
            phone_hash(phone),
            json.dumps(properties or {}, default=str),
        )
        return True
    except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
        logger.debug(f"Analytics insert failed for {event_name}: {e}")
        return False


def track(
    event_name: str,
    event_category: str,
    phone: Optional[str] = None,
    properties: Optional[dict[str, Any]] = None,
) -> None:
    """Schedule track_async in the background; no-op outside an event loop."""
    if not _enabled:
        return

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return

    task = loop.create_task(track_async(event_name, event_category, phone, properties))
    _pending.add(task)
    task.add_done_callback(_pending.discard)


async def shutdown(timeout: float = 5.0) -> None:
    """Wait briefly for queued events, then release an owned pool."""
    global _pool, _owns_pool
    if _pending:
        await asyncio.wait(set(_pending), timeout=timeout)

    if _pool is not None and _owns_pool:
        await _pool.close()
    _pool = None
    _owns_pool = False
