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

"""Tests for reminder dispatch."""

import asyncio
import sys
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from reminders.config import ReminderConfig
from reminders.gateway import SendResult
from reminders.manager import ReminderManager
from reminders.models import RecurrenceType, ReminderStatus
from reminders.scheduler import SEND_TIMEOUT_ERROR, DispatchStats, ReminderScheduler
from reminders.store import InMemoryReminderStore, StoreError

# Friday, 11/07/2025 15:30 on the literal clock
NOW = datetime(2025, 7, 11, 15, 30)
PHONE = "5521999999999"
MESSAGE = "🔔 *Lembrete:* Reunião com cliente"


@pytest.fixture(autouse=True)
def no_analytics():
    with patch("reminders.scheduler.track") as track:
        yield track


@pytest.fixture
def store():
    return InMemoryReminderStore()


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.send = AsyncMock(return_value=SendResult(success=True))
    return gateway


@pytest.fixture
def clock():
    """Mutable literal clock: set clock.now to move time."""
    clock = MagicMock()
    clock.now = NOW
    clock.side_effect = lambda: clock.now
    return clock


@pytest.fixture
def scheduler(store, gateway, clock):
    return ReminderScheduler(store, gateway, config=ReminderConfig(), clock=clock)


async def due_reminder(store, minutes_ago=5, **kwargs):
    return await store.create(
        phone=PHONE,
        message=MESSAGE,
        scheduled_at=NOW - timedelta(minutes=minutes_ago),
        **kwargs,
    )


class TestDelivery:
    @pytest.mark.asyncio
    async def test_delivers_due_reminder(self, scheduler, store, gateway):
        reminder = await due_reminder(store)

        stats = await scheduler.run_cycle()

        assert stats == DispatchStats(found=1, sent=1, failed=0, skipped=0)
        gateway.send.assert_awaited_once_with(PHONE, MESSAGE)
        stored = await store.get(reminder.id)
        assert stored.is_sent is True
        assert stored.sent_at == NOW
        assert stored.status == ReminderStatus.SENT
        assert stored.claimed_at is None

    @pytest.mark.asyncio
    async def test_future_reminder_is_not_sent(self, scheduler, store, gateway):
        await store.create(PHONE, MESSAGE, NOW + timedelta(minutes=1))

        stats = await scheduler.run_cycle()

        assert stats.found == 0
        gateway.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reminder_due_exactly_now_is_sent(self, scheduler, store, gateway):
        await store.create(PHONE, MESSAGE, NOW)
        assert (await scheduler.run_cycle()).sent == 1

    @pytest.mark.asyncio
    async def test_delivered_once(self, scheduler, store, gateway):
        await due_reminder(store)

        await scheduler.run_cycle()
        await scheduler.run_cycle()

        assert gateway.send.await_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_reminder_is_not_sent(self, scheduler, store, gateway):
        reminder = await due_reminder(store)
        await store.cancel(reminder.id, NOW)

        assert (await scheduler.run_cycle()).found == 0
        gateway.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tracks_delivery(self, scheduler, store, no_analytics):
        await due_reminder(store)
        await scheduler.run_cycle()
        assert no_analytics.call_args.args[0] == "reminder_delivered"


class TestRecurringDelivery:
    @pytest.mark.asyncio
    async def test_success_materializes_next_occurrence(self, scheduler, store):
        head = await due_reminder(
            store,
            is_recurring=True,
            recurrence_type=RecurrenceType.DAILY,
            recurrence_pattern="1",
            series_id="series-1",
        )

        await scheduler.run_cycle()

        pending = await store.find_pending(PHONE)
        assert len(pending) == 1
        assert pending[0].scheduled_at == head.scheduled_at + timedelta(days=1)
        assert pending[0].series_id == "series-1"
        assert pending[0].parent_id == head.id

    @pytest.mark.asyncio
    async def test_failure_does_not_materialize(self, scheduler, store, gateway):
        gateway.send.return_value = SendResult(success=False, reason="offline")
        await due_reminder(
            store,
            is_recurring=True,
            recurrence_type=RecurrenceType.DAILY,
            recurrence_pattern="1",
            series_id="series-1",
        )

        await scheduler.run_cycle()

        assert len(store.rows) == 1

    @pytest.mark.asyncio
    async def test_recurrence_error_does_not_fail_delivery(self, scheduler, store):
        await due_reminder(
            store,
            is_recurring=True,
            recurrence_type=RecurrenceType.DAILY,
            recurrence_pattern="1",
            series_id="series-1",
        )

        with patch.object(
            scheduler.recurrence, "materialize_next", AsyncMock(side_effect=StoreError("down"))
        ):
            stats = await scheduler.run_cycle()

        assert stats.sent == 1

    @pytest.mark.asyncio
    async def test_series_cancelled_during_send_stays_cancelled(self, scheduler, store, gateway, clock):
        await due_reminder(
            store,
            is_recurring=True,
            recurrence_type=RecurrenceType.DAILY,
            recurrence_pattern="1",
            series_id="series-1",
        )
        manager = ReminderManager(store, config=ReminderConfig(), clock=clock)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_send(phone, message):
            started.set()
            await release.wait()
            return SendResult(success=True)

        gateway.send.side_effect = slow_send

        with patch("reminders.manager.track"):
            cycle = asyncio.create_task(scheduler.run_cycle())
            await started.wait()
            result = await manager.cancel_reminder(PHONE, 1, confirmed=True)
            release.set()
            stats = await cycle

        assert result.success is True
        assert result.affected == 1
        assert stats.sent == 1
        assert len(store.rows) == 1
        (row,) = store.rows.values()
        assert row.status == ReminderStatus.CANCELED
        assert await store.find_pending(PHONE) == []


class TestFailures:
    """Retry bookkeeping up to the ceiling."""

    @pytest.mark.asyncio
    async def test_failure_increments_retry(self, scheduler, store, gateway, no_analytics):
        gateway.send.return_value = SendResult(success=False, reason="Número não existe")
        reminder = await due_reminder(store)

        stats = await scheduler.run_cycle()

        assert stats == DispatchStats(found=1, sent=0, failed=1, skipped=0)
        stored = await store.get(reminder.id)
        assert stored.is_sent is False
        assert stored.retry_count == 1
        assert stored.last_error == "Número não existe"
        assert stored.status == ReminderStatus.PENDING
        assert stored.claimed_at is None
        assert no_analytics.call_args.args[0] == "reminder_delivery_error"

    @pytest.mark.asyncio
    async def test_three_failures_exhaust_reminder(self, scheduler, store, gateway):
        gateway.send.return_value = SendResult(success=False, reason="offline")
        reminder = await due_reminder(store)

        for _ in range(3):
            await scheduler.run_cycle()
        stats = await scheduler.run_cycle()

        assert stats.found == 0
        assert gateway.send.await_count == 3

        stored = await store.get(reminder.id)
        assert stored.retry_count == 3
        assert stored.is_sent is False
        assert stored.status == ReminderStatus.EXHAUSTED
        assert await store.find_due(NOW) == []
        assert await store.find_pending(PHONE) == []

    @pytest.mark.asyncio
    async def test_exception_text_is_recorded(self, scheduler, store, gateway):
        gateway.send.side_effect = RuntimeError("conexão recusada")
        reminder = await due_reminder(store)

        await scheduler.run_cycle()

        assert (await store.get(reminder.id)).last_error == "conexão recusada"

    @pytest.mark.asyncio
    async def test_exception_without_message(self, scheduler, store, gateway):
        gateway.send.side_effect = RuntimeError()
        reminder = await due_reminder(store)

        await scheduler.run_cycle()

        assert (await store.get(reminder.id)).last_error == "Erro desconhecido"

    @pytest.mark.asyncio
    async def test_long_error_is_truncated(self, scheduler, store, gateway):
        gateway.send.return_value = SendResult(success=False, reason="x" * 400)
        reminder = await due_reminder(store)

        await scheduler.run_cycle()

        assert len((await store.get(reminder.id)).last_error) == 255

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, store, gateway, clock):
        async def slow_send(phone, text):
            await asyncio.sleep(1)
            return SendResult(success=True)

        gateway.send = AsyncMock(side_effect=slow_send)
        scheduler = ReminderScheduler(
            store, gateway, config=ReminderConfig(send_timeout_seconds=0.01), clock=clock
        )
        reminder = await due_reminder(store)

        stats = await scheduler.run_cycle()

        assert stats.failed == 1
        stored = await store.get(reminder.id)
        assert stored.last_error == SEND_TIMEOUT_ERROR
        assert stored.retry_count == 1

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_batch(self, scheduler, store, gateway):
        first = await due_reminder(store, minutes_ago=10)
        second = await due_reminder(store, minutes_ago=5)
        gateway.send.side_effect = [
            SendResult(success=False, reason="offline"),
            SendResult(success=True),
        ]

        stats = await scheduler.run_cycle()

        assert (stats.sent, stats.failed) == (1, 1)
        assert (await store.get(first.id)).retry_count == 1
        assert (await store.get(second.id)).is_sent is True


class TestOverlapProtection:
    @pytest.mark.asyncio
    async def test_claimed_reminder_is_skipped(self, scheduler, store, gateway):
        reminder = await due_reminder(store)
        assert await store.claim(reminder.id, NOW) is True

        stats = await scheduler.run_cycle()

        assert stats == DispatchStats(found=1, sent=0, failed=0, skipped=1)
        gateway.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_claim_is_reclaimed(self, scheduler, store, gateway):
        reminder = await due_reminder(store)
        await store.claim(reminder.id, NOW - timedelta(minutes=10))

        stats = await scheduler.run_cycle()

        assert stats.sent == 1

    @pytest.mark.asyncio
    async def test_cycle_is_skipped_while_another_runs(self, scheduler, store):
        await due_reminder(store)

        with patch.object(store, "find_due", AsyncMock(return_value=[])) as find_due:
            async with scheduler._cycle_lock:
                stats = await scheduler.run_cycle()

        assert stats == DispatchStats()
        find_due.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_cycles_send_once(self, scheduler, store, gateway):
        async def slow_send(phone, text):
            await asyncio.sleep(0.05)
            return SendResult(success=True)

        gateway.send = AsyncMock(side_effect=slow_send)
        await due_reminder(store)

        await asyncio.gather(scheduler.run_cycle(), scheduler.run_cycle())

        assert gateway.send.await_count == 1


class TestLiteralClock:
    @pytest.mark.asyncio
    async def test_uses_injected_clock(self, scheduler, store, gateway, clock):
        await store.create(PHONE, MESSAGE, NOW + timedelta(hours=1))

        assert (await scheduler.run_cycle()).found == 0

        clock.now = NOW + timedelta(hours=1)
        assert (await scheduler.run_cycle()).sent == 1


class TestRecurrenceLoop:
    @pytest.mark.asyncio
    async def test_catch_up_creates_missing_occurrence(self, scheduler, store):
        head = await due_reminder(
            store,
            is_recurring=True,
            recurrence_type=RecurrenceType.DAILY,
            recurrence_pattern="1",
            series_id="series-1",
        )
        await store.mark_sent(head.id, NOW - timedelta(minutes=5))

        assert await scheduler.recurrence.process_recently_sent() == 1
        assert len(await store.find_pending(PHONE)) == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler):
        scheduler.start()
        assert scheduler._started is True
        assert scheduler._dispatch_loop.seconds == 60
        assert scheduler._recurrence_loop.seconds == 300

        scheduler.stop()
        assert scheduler._started is False
