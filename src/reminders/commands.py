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
Command Parser

Classifies inbound chat text into exactly one command:

    #lembrete [quando] HH:MM <mensagem>   -> CreateCommand / InvalidFormatCommand
    #lembrete                             -> HelpCommand
    #lembrar                              -> ListCommand
    #cancelar N [confirmar]               -> CancelCommand
    #editar N <novo texto>                -> EditCommand
    #reagendar N <nova data/hora>         -> RescheduleCommand
    anything else                         -> UnrecognizedCommand

A keyword that matches but carries a bad argument ("#cancelar abc") yields
BadArgumentCommand, so the reply can show that command's usage instead of
staying silent.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from .recurrence import RecurrenceInfo, align_first_occurrence, detect_recurrence
from .time_parser import resolve_datetime

CREATE_KEYWORD = "#lembrete"
LIST_KEYWORD = "#lembrar"
CANCEL_KEYWORD = "#cancelar"
EDIT_KEYWORD = "#editar"
RESCHEDULE_KEYWORD = "#reagendar"
CONFIRM_TOKEN = "confirmar"

_CREATE = re.compile(r"^#lembrete(?:\s+(.*))?$", re.IGNORECASE | re.DOTALL)
_LIST = re.compile(r"^#lembrar$", re.IGNORECASE)
_CANCEL = re.compile(r"^#cancelar\s+(\S+)(?:\s+(confirmar))?$", re.IGNORECASE)
_EDIT = re.compile(r"^#editar\s+(\S+)\s+(.+)$", re.IGNORECASE | re.DOTALL)
_RESCHEDULE = re.compile(r"^#reagendar\s+(\S+)\s+(.+)$", re.IGNORECASE | re.DOTALL)


@dataclass
class CreateCommand:
    message: str
    scheduled_at: datetime
    rolled_forward: bool
    recurrence: Optional[RecurrenceInfo] = None


@dataclass
class InvalidFormatCommand:
    """#lembrete with a tail that has no resolvable date/time."""

    text: str


@dataclass
class HelpCommand:
    pass


@dataclass
class ListCommand:
    pass


@dataclass
class CancelCommand:
    index: int
    confirmed: bool = False


@dataclass
class EditCommand:
    index: int
    new_message: str


@dataclass
class RescheduleCommand:
    index: int
    scheduled_at: datetime
    rolled_forward: bool = False


@dataclass
class BadArgumentCommand:
    """Known keyword with a missing or malformed argument."""

    keyword: str
    text: str


@dataclass
class UnrecognizedCommand:
    text: str


Command = Union[
    CreateCommand,
    InvalidFormatCommand,
    HelpCommand,
    ListCommand,
    CancelCommand,
    EditCommand,
    RescheduleCommand,
    BadArgumentCommand,
    UnrecognizedCommand,
]


def _has_keyword(text: str, keyword: str) -> bool:
    """True when text starts with keyword as a whole word."""
    return re.match(rf"^{re.escape(keyword)}(?:\s|$)", text.strip(), re.IGNORECASE) is not None


def looks_like_create(text: str) -> bool:
    return _has_keyword(text, CREATE_KEYWORD)


def looks_like_list(text: str) -> bool:
    return _LIST.match(text.strip()) is not None


def looks_like_cancel(text: str) -> bool:
    return _has_keyword(text, CANCEL_KEYWORD)


def looks_like_edit(text: str) -> bool:
    return _has_keyword(text, EDIT_KEYWORD)


def looks_like_reschedule(text: str) -> bool:
    return _has_keyword(text, RESCHEDULE_KEYWORD)


def parse_index(token: str) -> Optional[int]:
    """Parse a 1-based list position; None unless a positive integer."""
    if not token.isdecimal():
        return None
    index = int(token)
    return index if index > 0 else None


def parse_create(tail: str, now: datetime) -> Command:
    """
    Parse the tail of a #lembrete command.

    The recurrence phrase is stripped first, then the date/time is resolved
    from the remaining text.
    """
    recurrence = detect_recurrence(tail)
    resolved = resolve_datetime(recurrence.cleaned_message, now)
    if resolved is None:
        return InvalidFormatCommand(text=tail)

    scheduled_at = resolved.scheduled_at
    rolled_forward = resolved.rolled_forward
    if recurrence.is_recurring:
        scheduled_at = align_first_occurrence(
            scheduled_at, recurrence.recurrence_type, recurrence.recurrence_pattern
        )
        # Moved to a later weekday, so "scheduled for tomorrow" no longer applies
        if scheduled_at != resolved.scheduled_at:
            rolled_forward = False

    return CreateCommand(
        message=resolved.message,
        scheduled_at=scheduled_at,
        rolled_forward=rolled_forward,
        recurrence=recurrence if recurrence.is_recurring else None,
    )


def parse_command(text: str, now: datetime) -> Command:
    """
    Classify an inbound chat message.

    Args:
        text: Raw message text
        now: Reference "now" on the literal clock

    Returns:
        One of the command dataclasses
    """
    text = (text or "").strip()

    if looks_like_create(text):
        match = _CREATE.match(text)
        tail = (match.group(1) or "").strip() if match else ""
        if not tail:
            return HelpCommand()
        return parse_create(tail, now)

    if looks_like_list(text):
        return ListCommand()

    if looks_like_cancel(text):
        match = _CANCEL.match(text)
        index = parse_index(match.group(1)) if match else None
        if index is None:
            return BadArgumentCommand(keyword=CANCEL_KEYWORD, text=text)
        return CancelCommand(index=index, confirmed=match.group(2) is not None)

    if looks_like_edit(text):
        match = _EDIT.match(text)
        index = parse_index(match.group(1)) if match else None
        if index is None:
            return BadArgumentCommand(keyword=EDIT_KEYWORD, text=text)
        return EditCommand(index=index, new_message=match.group(2).strip())

    if looks_like_reschedule(text):
        match = _RESCHEDULE.match(text)
        index = parse_index(match.group(1)) if match else None
        resolved = (
            resolve_datetime(match.group(2), now, require_message=False)
            if index is not None
            else None
        )
        if resolved is None:
            return BadArgumentCommand(keyword=RESCHEDULE_KEYWORD, text=text)
        return RescheduleCommand(
            index=index,
            scheduled_at=resolved.scheduled_at,
            rolled_forward=resolved.rolled_forward,
        )

    return UnrecognizedCommand(text=text)
