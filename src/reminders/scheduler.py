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
Reminder Scheduler Module

Background task loops for delivering due reminders and continuing
recurring series. Uses discord.ext.tasks for reliable scheduling.

Per reminder: PENDING -> SENT on a successful send, or stays PENDING with
retry_count + 1 on failure until max_retries, after which it is no longer
selected (status EXHAUSTED, row kept for the retention script).

Overlap protection: cycles are single-flight (asyncio.Lock) and each
reminder is claimed in the store before the send, so a reminder is never
handed to the gateway twice by concurrent cycles.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from discord.ext import tasks

from analytics import track

from .config import ReminderConfig
from .gateway import SendResult
from .models import Reminder, describe_error, literal_now
from .recurrence import RecurrenceEngine
from .store import ReminderStore

logger = logging.getLogger("lembrete.reminders.scheduler")

SEND_TIMEOUT_ERROR = "Timeout ao enviar mensagem"


@dataclass
class DispatchStats:
    """Counters from one dispatch cycle."""

    found: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class ReminderScheduler:
    """
    Background scheduler for delivering reminders.

    Runs a loop every poll_interval_seconds to deliver due reminders, and a
    slower loop that materializes missing next occurrences of recurring
    series.
    """

    def __init__(
        self,
        store: ReminderStore,
        gateway,
        recurrence: Optional[RecurrenceEngine] = None,
        config: Optional[ReminderConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the reminder scheduler.

        Args:
            store: Reminder store
            gateway: Messaging gateway exposing `async send(phone, text) -> SendResult`
            recurrence: Recurrence engine (built on the same store if omitted)
            config: Reminder configuration
            clock: Literal-clock "now" provider
        """
        self.store = store
        self.gateway = gateway
        self.config = config or ReminderConfig.from_env()
        self.clock = clock or (lambda: literal_now(self.config.timezone))
        self.recurrence = recurrence or RecurrenceEngine(store, self.config, self.clock)
        self._cycle_lock = asyncio.Lock()
        self._started = False

    def start(self) -> None:
        """Start the scheduler loops."""
        if not self._started:
            self._dispatch_loop.change_interval(seconds=self.config.poll_interval_seconds)
            self._recurrence_loop.change_interval(
                seconds=self.config.recurrence_interval_seconds
            )
            self._dispatch_loop.start()
            self._recurrence_loop.start()
            self._started = True
            logger.info(
                f"Reminder scheduler started (every {self.config.poll_interval_seconds}s, "
                f"recurrence every {self.config.recurrence_interval_seconds}s)"
            )

    def stop(self) -> None:
        """Stop the scheduler loops."""
        if self._started:
            self._dispatch_loop.cancel()
            self._recurrence_loop.cancel()
            self._started = False
            logger.info("Reminder scheduler stopped")

    @tasks.loop(seconds=60)
    async def _dispatch_loop(self) -> None:
        """Check for due reminders and deliver them."""
        try:
            await self.run_cycle()
        except Exception as e:
            logger.error(f"Error in reminder scheduler loop: {e}", exc_info=True)
            track(
                "scheduler_error",
                "error",
                properties={
                    "error_type": type(e).__name__,
                    "error_message": str(e)[:200],
                },
            )

    @tasks.loop(seconds=300)
    async def _recurrence_loop(self) -> None:
        """Create next occurrences that the dispatch path did not."""
        try:
            created = await self.recurrence.process_recently_sent()
            if created:
                logger.info(f"Recurrence catch-up created {created} occurrence(s)")
        except Exception as e:
            logger.error(f"Error in recurrence loop: {e}", exc_info=True)

    async def run_cycle(self) -> DispatchStats:
        """
        Run one dispatch cycle.

        Skipped entirely when a previous cycle is still running.

        Returns:
            DispatchStats for the cycle
        """
        if self._cycle_lock.locked():
            logger.warning("Previous dispatch cycle still running, skipping")
            return DispatchStats()

        async with self._cycle_lock:
            now = self.clock()
            stats = DispatchStats()

            due = await self.store.find_due(
                now,
                limit=self.config.due_batch_size,
                max_retries=self.config.max_retries,
            )
            stats.found = len(due)

            if due:
                logger.info(f"Processing {len(due)} due reminder(s) at {now.isoformat()}")

            for reminder in due:
                outcome = await self._deliver_reminder(reminder, now)
                if outcome is None:
                    stats.skipped += 1
                elif outcome:
                    stats.sent += 1
                else:
                    stats.failed += 1

            return stats

    async def _send(self, reminder: Reminder) -> SendResult:
        """Send through the gateway with a bounded wait."""
        try:
            return await asyncio.wait_for(
                self.gateway.send(reminder.phone, reminder.message),
                timeout=self.config.send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return SendResult(success=False, reason=SEND_TIMEOUT_ERROR)

    async def _deliver_reminder(self, reminder: Reminder, now: datetime) -> Optional[bool]:
        """
        Deliver a single reminder.

        Returns:
            True if sent, False if the attempt failed, None if not claimed
        """
        try:
            claimed = await self.store.claim(reminder.id, now, self.config.claim_ttl_seconds)
        except Exception as e:
            logger.error(f"Failed to claim reminder {reminder.id}: {e}", exc_info=True)
            return None

        if not claimed:
            logger.info(f"Reminder {reminder.id} already claimed or sent, skipping")
            return None

        try:
            logger.info(f"Sending reminder {reminder.id} to {reminder.phone}")
            result = await self._send(reminder)
            error = None if result.success else (result.reason or "Erro desconhecido")
        except Exception as e:
            error = e

        if error is not None:
            await self._record_failure(reminder, error)
            return False

        try:
            recorded = await self.store.mark_sent(reminder.id, now)
        except Exception as e:
            # Sent but not recorded: the stale claim keeps it from being re-sent
            # until claim_ttl_seconds pass.
            logger.error(f"Reminder {reminder.id} sent but not marked: {e}", exc_info=True)
            return True

        if not recorded:
            # Cancelled while the send was in flight; the series stays cancelled
            logger.info(f"Reminder {reminder.id} was cancelled during delivery, not continuing series")
            return True

        logger.info(f"Reminder {reminder.id} delivered")
        track(
            "reminder_delivered",
            "reminder",
            phone=reminder.phone,
            properties={
                "reminder_id": reminder.id,
                "is_recurring": reminder.is_recurring,
                "retry_count": reminder.retry_count,
            },
        )

        if reminder.is_recurring:
            try:
                await self.recurrence.materialize_next(reminder)
            except Exception as e:
                logger.error(
                    f"Failed to create next occurrence after {reminder.id}: {e}", exc_info=True
                )

        return True

    async def _record_failure(self, reminder: Reminder, error) -> None:
        """Bump retry_count and store the normalized error."""
        error_text = describe_error(error)
        attempt = (reminder.retry_count or 0) + 1
        logger.warning(
            f"Reminder {reminder.id} failed ({attempt}/{self.config.max_retries}): {error_text}"
        )

        try:
            await self.store.record_failure(reminder.id, error_text, self.config.max_retries)
        except Exception as e:
            logger.error(f"Failed to record failure for {reminder.id}: {e}", exc_info=True)

        if attempt >= self.config.max_retries:
            logger.warning(
                f"Reminder {reminder.id} reached {self.config.max_retries} attempts, "
                "no further delivery will be attempted"
            )

        track(
            "reminder_delivery_error",
            "error",
            phone=reminder.phone,
            properties={
                "reminder_id": reminder.id,
                "attempt": attempt,
                "error_message": error_text[:200],
            },
        )
