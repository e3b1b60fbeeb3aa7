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
Time Parser Module

Resolves the date/time part of a reminder command into a literal timestamp.

Grammar (first match wins, date/time tokens are consumed from the front and
whatever remains is the reminder text):

    HH:MM DD/MM[/YYYY] <mensagem>
    HH:MM <mensagem>                      (today, rolls to tomorrow if past)
    DD/MM[/YYYY] HH:MM <mensagem>
    (hoje|amanhã|<dia da semana>) HH:MM <mensagem>

Explicit dates are accepted even when already in the past; only the implicit
"today" forms roll forward.
"""

import logging
import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import pytz

logger = logging.getLogger("lembrete.reminders.time_parser")

# Sunday-based weekday numbers (0=domingo .. 6=sábado)
WEEKDAYS = {
    "domingo": 0,
    "segunda": 1,
    "terca": 2,
    "quarta": 3,
    "quinta": 4,
    "sexta": 5,
    "sabado": 6,
}

RELATIVE_DAYS = ("hoje", "amanha")

_TIME_TOKEN = re.compile(r"^(\d{1,2}):(\d{2})$")
_DATE_TOKEN = re.compile(r"^(\d{1,2})/(\d{1,2})(?:/(\d{4}))?$")
_TOKEN = re.compile(r"\s*(\S+)\s*")


@dataclass
class ResolvedDateTime:
    """Result of resolving a date/time expression."""

    scheduled_at: datetime  # literal clock, naive
    message: str
    rolled_forward: bool
    original_input: str


class TimeParseError(Exception):
    """Raised when a date/time expression cannot be resolved."""

    pass


def fold(text: str) -> str:
    """Lowercase and strip accents ("Amanhã" -> "amanha")."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def weekday_number(word: str) -> Optional[int]:
    """Map a Portuguese weekday name (any accent/plural/-feira form) to 0..6."""
    key = fold(word)
    if key.endswith("-feira"):
        key = key[: -len("-feira")]
    if key.endswith("s") and key[:-1] in WEEKDAYS:
        key = key[:-1]
    return WEEKDAYS.get(key)


def sunday_weekday(value: datetime) -> int:
    """Weekday of a datetime with Sunday=0 .. Saturday=6."""
    return (value.weekday() + 1) % 7


def _split_token(text: str) -> tuple[str, str]:
    """Split off the first whitespace-delimited token."""
    match = _TOKEN.match(text)
    if not match:
        return "", ""
    return match.group(1), text[match.end():]


def _build(year: int, month: int, day: int, hour: int, minute: int) -> Optional[datetime]:
    """Construct a literal timestamp, rejecting impossible calendar values."""
    try:
        return datetime(year, month, day, hour, minute)
    except ValueError:
        return None


def _is_message(text: str) -> bool:
    """Reminder text must be longer than 3 chars and not start with a digit."""
    return len(text) > 3 and not text[0].isdigit()


def resolve_datetime(
    text: str,
    now: datetime,
    require_message: bool = True,
) -> Optional[ResolvedDateTime]:
    """
    Resolve a date/time expression followed by the reminder text.

    Args:
        text: Command tail with the keyword already stripped
        now: Reference "now" on the literal clock
        require_message: When False, a bare date/time is accepted (reschedule)

    Returns:
        ResolvedDateTime, or None if no grammar form matches
    """
    text = text.strip()
    if not text:
        return None

    first, rest = _split_token(text)
    second, tail = _split_token(rest)

    scheduled_at: Optional[datetime] = None
    rolled_forward = False
    message = ""
    matched = False

    time_match = _TIME_TOKEN.match(first)
    date_match = _DATE_TOKEN.match(first)

    if time_match:
        hour, minute = int(time_match.group(1)), int(time_match.group(2))
        second_date = _DATE_TOKEN.match(second) if second else None

        if second_date and (tail.strip() or not require_message):
            # HH:MM DD/MM[/YYYY] <mensagem>
            day, month = int(second_date.group(1)), int(second_date.group(2))
            year = int(second_date.group(3)) if second_date.group(3) else now.year
            scheduled_at = _build(year, month, day, hour, minute)
            message = tail.strip()
            matched = True
        elif rest.strip() or not require_message:
            # HH:MM <mensagem> (today)
            scheduled_at = _build(now.year, now.month, now.day, hour, minute)
            if scheduled_at is not None and scheduled_at <= now:
                scheduled_at += timedelta(days=1)
                rolled_forward = True
            message = rest.strip()
            matched = True

    elif date_match:
        second_time = _TIME_TOKEN.match(second) if second else None
        if second_time:
            # DD/MM[/YYYY] HH:MM <mensagem>
            day, month = int(date_match.group(1)), int(date_match.group(2))
            year = int(date_match.group(3)) if date_match.group(3) else now.year
            hour, minute = int(second_time.group(1)), int(second_time.group(2))
            scheduled_at = _build(year, month, day, hour, minute)
            message = tail.strip()
            matched = True

    else:
        day_word = fold(first)
        target_day = weekday_number(first)
        second_time = _TIME_TOKEN.match(second) if second else None

        if second_time and (day_word in RELATIVE_DAYS or target_day is not None):
            # (hoje|amanhã|<dia>) HH:MM <mensagem>
            hour, minute = int(second_time.group(1)), int(second_time.group(2))
            scheduled_at = _build(now.year, now.month, now.day, hour, minute)
            message = tail.strip()
            matched = True
            if message and not _is_message(message) and _is_message(first):
                # Short trailing text falls back to the day word as the message
                message = first

            if scheduled_at is not None:
                if day_word == "hoje":
                    if scheduled_at <= now:
                        scheduled_at += timedelta(days=1)
                        rolled_forward = True
                elif day_word == "amanha":
                    scheduled_at += timedelta(days=1)
                else:
                    days_to_add = target_day - sunday_weekday(now)
                    if days_to_add <= 0:
                        days_to_add += 7
                    scheduled_at += timedelta(days=days_to_add)

    if not matched or scheduled_at is None:
        return None

    if require_message and not _is_message(message):
        return None

    return ResolvedDateTime(
        scheduled_at=scheduled_at,
        message=message,
        rolled_forward=rolled_forward,
        original_input=text,
    )


def parse_datetime_or_raise(
    text: str,
    now: datetime,
    require_message: bool = True,
) -> ResolvedDateTime:
    """
    Like resolve_datetime, but raises on failure.

    Raises:
        TimeParseError: If the expression cannot be resolved
    """
    if not text or not text.strip():
        raise TimeParseError("Conteúdo do lembrete não pode estar vazio")

    resolved = resolve_datetime(text, now, require_message=require_message)
    if resolved is None:
        raise TimeParseError(
            f"Formato de lembrete inválido: '{text.strip()}'. "
            "Use: HH:MM Mensagem ou DD/MM HH:MM Mensagem"
        )
    return resolved


def parse_iso_timestamp(value: str, timezone: str = "America/Sao_Paulo") -> datetime:
    """
    Parse an ISO-8601 timestamp from an API client into a literal-clock value.

    Naive input is taken as wall-clock digits. An offset (or "Z") is
    converted to the given zone first, then dropped.

    Raises:
        TimeParseError: If the value is not an ISO-8601 timestamp
    """
    if not isinstance(value, str) or not value.strip():
        raise TimeParseError("Data do lembrete é obrigatória")

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise TimeParseError(f"Data inválida: '{value}'. Use o formato ISO 8601") from e

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(pytz.timezone(timezone)).replace(tzinfo=None)
    return parsed.replace(second=0, microsecond=0)
