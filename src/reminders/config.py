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
Reminder System Configuration

Configurable parameters for parsing, listing, dispatch and recurrence.
Values can be overridden via environment variables.
"""

import os
from dataclasses import dataclass


@dataclass
class ReminderConfig:
    """Configuration for the reminder system."""

    # Wall clock the users type their times in (literal clock zone)
    timezone: str = "America/Sao_Paulo"

    # Scheduler cadence
    poll_interval_seconds: int = 60
    recurrence_interval_seconds: int = 300

    # Dispatch settings
    max_retries: int = 3
    due_batch_size: int = 100
    send_timeout_seconds: float = 15.0
    claim_ttl_seconds: int = 300

    # Positional addressing (#N) window
    pending_limit: int = 20

    # Recurrence catch-up
    recent_window_hours: int = 24
    series_tolerance_minutes: int = 60

    @classmethod
    def from_env(cls) -> "ReminderConfig":
        """Create config from environment variables with defaults."""
        return cls(
            timezone=os.getenv("REMINDER_TIMEZONE", "America/Sao_Paulo"),
            poll_interval_seconds=int(os.getenv("REMINDER_POLL_SECONDS", "60")),
            recurrence_interval_seconds=int(
                os.getenv("REMINDER_RECURRENCE_SECONDS", "300")
            ),
            max_retries=int(os.getenv("REMINDER_MAX_RETRIES", "3")),
            due_batch_size=int(os.getenv("REMINDER_DUE_BATCH", "100")),
            send_timeout_seconds=float(os.getenv("REMINDER_SEND_TIMEOUT", "15.0")),
            claim_ttl_seconds=int(os.getenv("REMINDER_CLAIM_TTL", "300")),
            pending_limit=int(os.getenv("REMINDER_PENDING_LIMIT", "20")),
            recent_window_hours=int(os.getenv("REMINDER_RECENT_WINDOW_HOURS", "24")),
            series_tolerance_minutes=int(
                os.getenv("REMINDER_SERIES_TOLERANCE_MINUTES", "60")
            ),
        )
