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
Reminders Package

Chat-command reminders delivered over WhatsApp, with daily, weekly,
weekday-list and monthly recurrence.
"""

from .config import ReminderConfig
from .models import (
    CommandResult,
    InboundMessage,
    PhoneFormatError,
    RecurrenceType,
    Reminder,
    ReminderStatus,
    literal_now,
    normalize_phone,
)
from .time_parser import (
    ResolvedDateTime,
    TimeParseError,
    parse_datetime_or_raise,
    parse_iso_timestamp,
    resolve_datetime,
)
from .recurrence import RecurrenceEngine, RecurrenceInfo, detect_recurrence, next_occurrence
from .commands import parse_command
from .store import InMemoryReminderStore, PostgresReminderStore, ReminderStore, StoreError
from .gateway import EvolutionGateway, GatewayError, SendResult
from .manager import ReminderManager
from .scheduler import DispatchStats, ReminderScheduler
from .inbound import InboundRouter, extract_inbound

__all__ = [
    "ReminderConfig",
    "CommandResult",
    "InboundMessage",
    "PhoneFormatError",
    "RecurrenceType",
    "Reminder",
    "ReminderStatus",
    "literal_now",
    "normalize_phone",
    "ResolvedDateTime",
    "TimeParseError",
    "parse_datetime_or_raise",
    "parse_iso_timestamp",
    "resolve_datetime",
    "RecurrenceEngine",
    "RecurrenceInfo",
    "detect_recurrence",
    "next_occurrence",
    "parse_command",
    "InMemoryReminderStore",
    "PostgresReminderStore",
    "ReminderStore",
    "StoreError",
    "EvolutionGateway",
    "GatewayError",
    "SendResult",
    "ReminderManager",
    "DispatchStats",
    "ReminderScheduler",
    "InboundRouter",
    "extract_inbound",
]
