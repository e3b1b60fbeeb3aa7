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
Reminder Data Model

The Reminder record, its status/recurrence enums and the literal-clock
helpers shared by the parser, the store and the scheduler.

Literal clock: the digits a user types ("15:30 25/12") are written verbatim
into a naive datetime. No timezone conversion is ever applied, so every
"now" compared against a stored timestamp must come from literal_now().
"""

import re
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import pytz

# Visible marker stored in front of every reminder body
REMINDER_PREFIX = "🔔 *Lembrete:* "

CANCELED_BY_USER = "Cancelado pelo usuário"
SERIES_CANCELED = "Série cancelada pelo usuário"

MAX_ERROR_LENGTH = 255


class ReminderStatus(str, Enum):
    """Delivery status, kept in step with is_sent."""

    PENDING = "PENDING"
    SENT = "SENT"
    CANCELED = "CANCELED"
    EXHAUSTED = "EXHAUSTED"


class RecurrenceType(str, Enum):
    """Supported recurrence kinds."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    SPECIFIC_DAYS = "SPECIFIC_DAYS"
    MONTHLY = "MONTHLY"


class PhoneFormatError(ValueError):
    """Raised when a phone number fails normalization."""

    pass


@dataclass
class Reminder:
    """A single scheduled reminder (one occurrence of a series, if recurring)."""

    id: str
    phone: str
    message: str
    scheduled_at: datetime
    is_sent: bool = False
    sent_at: Optional[datetime] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    status: ReminderStatus = ReminderStatus.PENDING
    is_recurring: bool = False
    recurrence_type: Optional[RecurrenceType] = None
    recurrence_pattern: Optional[str] = None
    series_id: Optional[str] = None
    parent_id: Optional[str] = None
    end_date: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Any) -> "Reminder":
        """Build a Reminder from an asyncpg Record or a plain dict."""
        data = dict(record)
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["id"] = str(kwargs["id"])
        if kwargs.get("series_id") is not None:
            kwargs["series_id"] = str(kwargs["series_id"])
        if kwargs.get("parent_id") is not None:
            kwargs["parent_id"] = str(kwargs["parent_id"])
        if kwargs.get("status") is not None:
            kwargs["status"] = ReminderStatus(kwargs["status"])
        if kwargs.get("recurrence_type") is not None:
            kwargs["recurrence_type"] = RecurrenceType(kwargs["recurrence_type"])
        kwargs["retry_count"] = kwargs.get("retry_count") or 0
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view with ISO timestamps and enum values."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            data[f.name] = value
        return data

    @property
    def display_message(self) -> str:
        """Message text without the stored prefix marker."""
        return strip_prefix(self.message)

    @property
    def has_recurrence(self) -> bool:
        """True when all recurrence fields needed for a next occurrence are set."""
        return bool(
            self.is_recurring
            and self.recurrence_type
            and self.recurrence_pattern
            and self.series_id
        )


@dataclass
class InboundMessage:
    """Normalized inbound chat event, independent of the transport."""

    sender_phone: str
    text: str
    received_at: datetime


@dataclass
class CommandResult:
    """Outcome of a command handler: reply text plus success flag."""

    success: bool
    response: str
    reminder: Optional[Reminder] = None
    affected: int = 0
    extra: dict = field(default_factory=dict)


def literal_now(timezone: str = "America/Sao_Paulo") -> datetime:
    """
    Current wall-clock time in the given zone, as a naive literal timestamp.

    Seconds are dropped so that "15:30" typed at 15:30:20 compares as "now".
    """
    local = datetime.now(pytz.timezone(timezone))
    return local.replace(tzinfo=None, second=0, microsecond=0)


def normalize_phone(phone: str) -> str:
    """
    Normalize a recipient identifier to digits with country code.

    Args:
        phone: Raw phone or WhatsApp JID (e.g. "5521999999999@s.whatsapp.net")

    Returns:
        Digits-only phone, e.g. "5521999999999"

    Raises:
        PhoneFormatError: If the result is not 12-14 digits long
    """
    phone = phone.split("@", 1)[0]
    digits = re.sub(r"\D", "", phone)

    if not digits.startswith("55") and len(digits) == 11:
        digits = "55" + digits

    if len(digits) < 12 or len(digits) > 14:
        raise PhoneFormatError(
            "Número de telefone inválido! Use o formato: 5511999999999"
        )

    return digits


def ensure_prefix(message: str) -> str:
    """Apply the reminder marker unless already present."""
    message = message.strip()
    if message.startswith(REMINDER_PREFIX.strip()):
        return message
    return REMINDER_PREFIX + message


def strip_prefix(message: str) -> str:
    """Remove the reminder marker for display."""
    marker = REMINDER_PREFIX.strip()
    if message.startswith(marker):
        return message[len(marker):].strip()
    return message


def truncate(text: str, max_len: int = 50) -> str:
    """Truncate text with ellipsis."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def describe_error(error: Any) -> str:
    """Normalize an exception or string into a storable error text."""
    if isinstance(error, BaseException) and str(error):
        text = str(error)
    elif isinstance(error, str) and error:
        text = error
    else:
        text = "Erro desconhecido"
    return text[:MAX_ERROR_LENGTH]
