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
Recurrence Module

Detects recurrence phrases in reminder text and manages recurring series.

A series is a chain of one-off Reminder rows sharing a series_id. Only the
next occurrence exists at any time: after an occurrence is delivered, the
engine materializes the one after it.

Pattern encodings:
- DAILY: "1"
- WEEKLY: "*" (every 7 days) or a single weekday "0".."6"
- SPECIFIC_DAYS: sorted comma list, e.g. "1,3,5"
- MONTHLY: "1"
"""

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional, Union

from .config import ReminderConfig
from .models import RecurrenceType, Reminder, literal_now
from .time_parser import sunday_weekday, weekday_number

if TYPE_CHECKING:
    from .store import ReminderStore

logger = logging.getLogger("lembrete.reminders.recurrence")

WEEKLY_ANY_DAY = "*"

_WEEKDAY = r"(domingo|segunda|ter[çc]a|quarta|quinta|sexta|s[áa]bado)s?(?:-feiras?)?"
_EVERY = r"(?:todos|todas|todo|toda)\s+(?:os\s+|as\s+)?"
_JOIN = r"\s*(?:,|\be\b)\s*"

# Priority order: daily -> monthly -> weekly -> weekly on a day -> list of days
DAILY_PATTERN = re.compile(
    r"\b(?:todos\s+os\s+dias|todo\s+dia|diariamente|every\s+day|daily)\b",
    re.IGNORECASE,
)
MONTHLY_PATTERN = re.compile(
    r"\b(?:todos\s+os\s+meses|todo\s+m[êe]s|mensalmente|every\s+month|monthly)\b",
    re.IGNORECASE,
)
WEEKLY_PATTERN = re.compile(
    r"\b(?:todas\s+as\s+semanas|toda\s+semana|semanalmente|every\s+week|weekly)\b",
    re.IGNORECASE,
)
WEEKLY_DAY_PATTERN = re.compile(
    rf"\b{_EVERY}{_WEEKDAY}\b(?!{_JOIN}{_WEEKDAY})",
    re.IGNORECASE,
)
MULTI_DAY_PATTERN = re.compile(
    rf"\b(?:{_EVERY})?{_WEEKDAY}(?:{_JOIN}{_WEEKDAY})+\b",
    re.IGNORECASE,
)
_WEEKDAY_WORD = re.compile(_WEEKDAY, re.IGNORECASE)


@dataclass
class RecurrenceInfo:
    """Result of scanning a text for a recurrence phrase."""

    is_recurring: bool
    recurrence_type: Optional[RecurrenceType]
    recurrence_pattern: Optional[str]
    cleaned_message: str


def _remove_span(text: str, match: re.Match) -> str:
    cleaned = text[: match.start()] + " " + text[match.end():]
    return re.sub(r"\s+", " ", cleaned).strip()


def detect_recurrence(text: str) -> RecurrenceInfo:
    """
    Find and strip a recurrence phrase.

    Args:
        text: Candidate reminder text

    Returns:
        RecurrenceInfo; when nothing matches, the text comes back unchanged
    """
    match = DAILY_PATTERN.search(text)
    if match:
        return RecurrenceInfo(True, RecurrenceType.DAILY, "1", _remove_span(text, match))

    match = MONTHLY_PATTERN.search(text)
    if match:
        return RecurrenceInfo(True, RecurrenceType.MONTHLY, "1", _remove_span(text, match))

    match = WEEKLY_PATTERN.search(text)
    if match:
        return RecurrenceInfo(
            True, RecurrenceType.WEEKLY, WEEKLY_ANY_DAY, _remove_span(text, match)
        )

    match = WEEKLY_DAY_PATTERN.search(text)
    if match:
        day = weekday_number(match.group(1))
        return RecurrenceInfo(
            True, RecurrenceType.WEEKLY, str(day), _remove_span(text, match)
        )

    match = MULTI_DAY_PATTERN.search(text)
    if match:
        days = sorted(
            {weekday_number(m.group(1)) for m in _WEEKDAY_WORD.finditer(match.group(0))}
        )
        return RecurrenceInfo(
            True,
            RecurrenceType.SPECIFIC_DAYS,
            ",".join(str(d) for d in days),
            _remove_span(text, match),
        )

    return RecurrenceInfo(False, None, None, text)


def _parse_days(pattern: str) -> list[int]:
    return sorted(int(d) for d in pattern.split(",") if d.strip())


def _is_single_weekday(pattern: str) -> bool:
    return len(pattern) == 1 and pattern in "0123456"


def _add_month(current: datetime) -> datetime:
    year = current.year + current.month // 12
    month = current.month % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return current.replace(year=year, month=month, day=min(current.day, last_day))


def next_occurrence(
    current: datetime,
    recurrence_type: Union[RecurrenceType, str, None],
    pattern: Optional[str],
) -> Optional[datetime]:
    """
    Calculate the occurrence following `current`.

    Args:
        current: Scheduled time of the current occurrence (literal clock)
        recurrence_type: Recurrence kind
        pattern: Type-dependent pattern (see module docstring)

    Returns:
        Next occurrence, or None when the type is unknown
    """
    try:
        kind = RecurrenceType(recurrence_type)
    except ValueError:
        return None

    if kind is RecurrenceType.DAILY:
        return current + timedelta(days=1)

    if kind is RecurrenceType.WEEKLY:
        if pattern and _is_single_weekday(pattern):
            days_to_add = int(pattern) - sunday_weekday(current)
            if days_to_add <= 0:
                days_to_add += 7
            return current + timedelta(days=days_to_add)
        return current + timedelta(days=7)

    if kind is RecurrenceType.SPECIFIC_DAYS:
        days = _parse_days(pattern or "")
        if not days:
            return None
        current_day = sunday_weekday(current)
        later = [d for d in days if d > current_day]
        if later:
            return current + timedelta(days=later[0] - current_day)
        return current + timedelta(days=7 - current_day + days[0])

    if kind is RecurrenceType.MONTHLY:
        return _add_month(current)

    return None


def align_first_occurrence(
    scheduled_at: datetime,
    recurrence_type: Optional[RecurrenceType],
    pattern: Optional[str],
) -> datetime:
    """Move a weekday-bound series start to the first listed weekday on/after it."""
    if recurrence_type is RecurrenceType.WEEKLY and pattern and _is_single_weekday(pattern):
        days = [int(pattern)]
    elif recurrence_type is RecurrenceType.SPECIFIC_DAYS and pattern:
        days = _parse_days(pattern)
    else:
        return scheduled_at

    current_day = sunday_weekday(scheduled_at)
    offset = min((d - current_day) % 7 for d in days)
    return scheduled_at + timedelta(days=offset)


def describe_recurrence(recurrence_type: Optional[RecurrenceType], pattern: Optional[str]) -> str:
    """Short Portuguese label for a recurrence, used in chat replies."""
    names = ["domingo", "segunda", "terça", "quarta", "quinta", "sexta", "sábado"]

    if recurrence_type is RecurrenceType.DAILY:
        return "diário"
    if recurrence_type is RecurrenceType.MONTHLY:
        return "mensal"
    if recurrence_type is RecurrenceType.WEEKLY:
        if pattern and _is_single_weekday(pattern):
            return f"toda {names[int(pattern)]}"
        return "semanal"
    if recurrence_type is RecurrenceType.SPECIFIC_DAYS and pattern:
        return ", ".join(names[d] for d in _parse_days(pattern))
    return "único"


class RecurrenceEngine:
    """
    Manages recurring series: continuation, catch-up and cancellation.
    """

    def __init__(
        self,
        store: "ReminderStore",
        config: Optional[ReminderConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the recurrence engine.

        Args:
            store: Reminder store
            config: Reminder configuration
            clock: Literal-clock "now" provider (defaults to literal_now)
        """
        self.store = store
        self.config = config or ReminderConfig.from_env()
        self.clock = clock or (lambda: literal_now(self.config.timezone))

    async def materialize_next(self, reminder: Reminder) -> Optional[Reminder]:
        """
        Create the next occurrence of a recurring reminder.

        Returns:
            The new Reminder, or None if not recurring or the series ended
        """
        if not reminder.has_recurrence:
            return None

        next_date = next_occurrence(
            reminder.scheduled_at, reminder.recurrence_type, reminder.recurrence_pattern
        )
        if next_date is None:
            return None

        if reminder.end_date and next_date > reminder.end_date:
            logger.info(f"Series {reminder.series_id} reached its end date")
            return None

        next_reminder = await self.store.create(
            phone=reminder.phone,
            message=reminder.message,
            scheduled_at=next_date,
            is_recurring=True,
            recurrence_type=reminder.recurrence_type,
            recurrence_pattern=reminder.recurrence_pattern,
            series_id=reminder.series_id,
            parent_id=reminder.parent_id or reminder.id,
            end_date=reminder.end_date,
        )

        logger.info(
            f"Next occurrence {next_reminder.id} of series {reminder.series_id} "
            f"created for {next_date.isoformat()}"
        )
        return next_reminder

    async def process_recently_sent(self) -> int:
        """
        Catch up on series whose next occurrence was never created.

        Looks at recurring reminders delivered within the recent window and
        materializes the next occurrence only when none exists near the
        expected date, so repeated runs never duplicate occurrences.

        Returns:
            Number of occurrences created
        """
        since = self.clock() - timedelta(hours=self.config.recent_window_hours)
        tolerance = timedelta(minutes=self.config.series_tolerance_minutes)
        created = 0

        try:
            sent = await self.store.find_recently_sent_recurring(since)
        except Exception as e:
            logger.error(f"Failed to load recently sent recurring reminders: {e}", exc_info=True)
            return 0

        if sent:
            logger.info(f"Checking {len(sent)} recently sent recurring reminder(s)")

        for reminder in sent:
            next_date = next_occurrence(
                reminder.scheduled_at, reminder.recurrence_type, reminder.recurrence_pattern
            )
            if next_date is None:
                continue

            try:
                existing = await self.store.find_series_occurrence(
                    reminder.series_id, next_date, next_date + tolerance
                )
                if existing is None and await self.materialize_next(reminder):
                    created += 1
            except Exception as e:
                logger.error(
                    f"Failed to continue series {reminder.series_id}: {e}", exc_info=True
                )

        return created

    async def cancel_series(self, series_id: str) -> int:
        """
        Cancel every not-yet-sent occurrence of a series.

        Already delivered occurrences are left untouched.

        Returns:
            Number of occurrences cancelled
        """
        count = await self.store.cancel_series(series_id, self.clock())
        logger.info(f"Cancelled {count} reminder(s) of series {series_id}")
        return count
