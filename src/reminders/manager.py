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
Reminder Manager Module

Executes parsed commands against the reminder store.

Positional references (#N) are always resolved against a freshly fetched
pending list (not sent, not retry-exhausted, ordered by scheduled_at, capped
at pending_limit), so #N means the same thing it meant in the last #lembrar
reply as long as nothing changed in between. The mutation that follows is
conditional on the reminder still being pending; if it was delivered or
cancelled in the meantime the user is asked to list again.

Cancellation is a stateless two-step protocol: "#cancelar N" only previews,
"#cancelar N confirmar" mutates. Nothing is remembered between messages.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from analytics import track

from . import formatter
from .commands import (
    BadArgumentCommand,
    CancelCommand,
    Command,
    CreateCommand,
    EditCommand,
    HelpCommand,
    InvalidFormatCommand,
    ListCommand,
    RescheduleCommand,
)
from .config import ReminderConfig
from .models import (
    CommandResult,
    PhoneFormatError,
    Reminder,
    ensure_prefix,
    literal_now,
    normalize_phone,
)
from .recurrence import RecurrenceEngine
from .store import ReminderStore

logger = logging.getLogger("lembrete.reminders.manager")


class ReminderManager:
    """
    Lifecycle manager for reminders: create, list, cancel, edit, reschedule.

    Handlers never raise; store failures are logged and turned into an
    apologetic CommandResult.
    """

    def __init__(
        self,
        store: ReminderStore,
        recurrence: Optional[RecurrenceEngine] = None,
        config: Optional[ReminderConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the reminder manager.

        Args:
            store: Reminder store
            recurrence: Recurrence engine (built on the same store if omitted)
            config: Reminder configuration
            clock: Literal-clock "now" provider
        """
        self.store = store
        self.config = config or ReminderConfig.from_env()
        self.clock = clock or (lambda: literal_now(self.config.timezone))
        self.recurrence = recurrence or RecurrenceEngine(store, self.config, self.clock)

    async def handle(self, phone: str, command: Command) -> Optional[CommandResult]:
        """
        Run the handler for a parsed command.

        Returns:
            CommandResult to reply with, or None when no reply should be sent
        """
        if isinstance(command, HelpCommand):
            return CommandResult(success=True, response=formatter.help_message())
        if isinstance(command, InvalidFormatCommand):
            return CommandResult(success=False, response=formatter.invalid_format_message())
        if isinstance(command, BadArgumentCommand):
            return CommandResult(success=False, response=formatter.usage_message(command.keyword))

        if isinstance(command, CreateCommand):
            name = "create"
            result = await self.create_reminder(phone, command)
        elif isinstance(command, ListCommand):
            name = "list"
            result = await self.list_reminders(phone)
        elif isinstance(command, CancelCommand):
            name = "cancel"
            result = await self.cancel_reminder(phone, command.index, command.confirmed)
        elif isinstance(command, EditCommand):
            name = "edit"
            result = await self.edit_reminder(phone, command.index, command.new_message)
        elif isinstance(command, RescheduleCommand):
            name = "reschedule"
            result = await self.reschedule_reminder(
                phone, command.index, command.scheduled_at, command.rolled_forward
            )
        else:
            return None

        track(
            "command_used",
            "command",
            phone=phone,
            properties={"command_name": name, "success": result.success},
        )
        return result

    # =========================================================================
    # Create / list
    # =========================================================================

    async def create_reminder(self, phone: str, command: CreateCommand) -> CommandResult:
        """
        Persist a new reminder (the head of a new series if recurring).

        Args:
            phone: Sender phone (raw or JID)
            command: Parsed create command
        """
        try:
            normalized = normalize_phone(phone)
        except PhoneFormatError as e:
            logger.warning(f"Rejected reminder from invalid phone {phone!r}: {e}")
            return CommandResult(success=False, response=f"❌ {e}")

        recurrence = command.recurrence
        try:
            reminder = await self.store.create(
                phone=normalized,
                message=ensure_prefix(command.message),
                scheduled_at=command.scheduled_at,
                is_recurring=recurrence is not None,
                recurrence_type=recurrence.recurrence_type if recurrence else None,
                recurrence_pattern=recurrence.recurrence_pattern if recurrence else None,
                series_id=str(uuid.uuid4()) if recurrence else None,
            )
        except Exception as e:
            logger.error(f"Failed to create reminder for {normalized}: {e}", exc_info=True)
            return CommandResult(success=False, response=formatter.error_message("create"))

        return CommandResult(
            success=True,
            response=formatter.created_message(reminder, command.rolled_forward),
            reminder=reminder,
        )

    async def schedule_reminder(self, phone: str, message: str, scheduled_at: datetime) -> Reminder:
        """
        Create a one-off reminder from the REST API.

        Unlike chat commands, errors propagate to the caller.

        Raises:
            ValueError: If the message is empty
            PhoneFormatError: If the phone fails normalization
            StoreError: If the reminder cannot be persisted
        """
        if not message or not message.strip():
            raise ValueError("Mensagem inválida")
        normalized = normalize_phone(phone)

        reminder = await self.store.create(
            phone=normalized,
            message=ensure_prefix(message),
            scheduled_at=scheduled_at,
        )
        logger.info(f"Reminder {reminder.id} scheduled via API for {normalized}")
        track(
            "reminder_scheduled",
            "reminder",
            phone=normalized,
            properties={"source": "api"},
        )
        return reminder

    async def pending_list(self, phone: str) -> list[Reminder]:
        """Fetch the positional pending list for a sender."""
        return await self.store.find_pending(
            normalize_phone(phone),
            limit=self.config.pending_limit,
            max_retries=self.config.max_retries,
        )

    async def list_reminders(self, phone: str) -> CommandResult:
        """List pending reminders, numbered from 1."""
        try:
            reminders = await self.pending_list(phone)
        except Exception as e:
            logger.error(f"Failed to list reminders for {phone}: {e}", exc_info=True)
            return CommandResult(success=False, response=formatter.error_message("list"))

        return CommandResult(success=True, response=formatter.list_message(reminders))

    # =========================================================================
    # Positional commands
    # =========================================================================

    async def _resolve_index(
        self, phone: str, index: int, action: str
    ) -> tuple[Optional[Reminder], Optional[CommandResult]]:
        """
        Resolve #N against a fresh pending list.

        Returns:
            (reminder, None) on success or (None, error result)
        """
        reminders = await self.pending_list(phone)

        if not reminders:
            return None, CommandResult(
                success=False, response=formatter.no_pending_message(action)
            )

        if index < 1 or index > len(reminders):
            return None, CommandResult(
                success=False, response=formatter.invalid_index_message(len(reminders))
            )

        return reminders[index - 1], None

    async def cancel_reminder(self, phone: str, index: int, confirmed: bool = False) -> CommandResult:
        """
        Cancel the reminder at position #index.

        Without confirmation only a preview is returned and nothing changes.
        A confirmed cancel of a recurring reminder cancels its whole series.
        """
        try:
            reminder, error = await self._resolve_index(phone, index, "cancel")
            if error:
                return error

            if not confirmed:
                return CommandResult(
                    success=True,
                    response=formatter.cancel_confirmation_message(index, reminder),
                    reminder=reminder,
                )

            if reminder.is_recurring and reminder.series_id:
                count = await self.recurrence.cancel_series(reminder.series_id)
                if count == 0:
                    return CommandResult(success=False, response=formatter.list_changed_message())
                logger.info(f"Series {reminder.series_id} cancelled by {phone} ({count} pending)")
                return CommandResult(
                    success=True,
                    response=formatter.canceled_message(index, reminder, series_count=count),
                    reminder=reminder,
                    affected=count,
                )

            if not await self.store.cancel(reminder.id, self.clock()):
                return CommandResult(success=False, response=formatter.list_changed_message())

            logger.info(f"Reminder {reminder.id} cancelled by {phone}")
            return CommandResult(
                success=True,
                response=formatter.canceled_message(index, reminder),
                reminder=reminder,
                affected=1,
            )

        except Exception as e:
            logger.error(f"Failed to cancel reminder #{index} for {phone}: {e}", exc_info=True)
            return CommandResult(success=False, response=formatter.error_message("cancel"))

    async def edit_reminder(self, phone: str, index: int, new_message: str) -> CommandResult:
        """Replace the message of the reminder at position #index."""
        try:
            reminder, error = await self._resolve_index(phone, index, "edit")
            if error:
                return error

            updated = await self.store.update(reminder.id, message=ensure_prefix(new_message))
            if updated is None:
                return CommandResult(success=False, response=formatter.list_changed_message())

            logger.info(f"Reminder {reminder.id} edited by {phone}")
            return CommandResult(
                success=True,
                response=formatter.edited_message(
                    index, reminder.display_message, updated.display_message, updated.scheduled_at
                ),
                reminder=updated,
                affected=1,
            )

        except Exception as e:
            logger.error(f"Failed to edit reminder #{index} for {phone}: {e}", exc_info=True)
            return CommandResult(success=False, response=formatter.error_message("edit"))

    async def reschedule_reminder(
        self,
        phone: str,
        index: int,
        scheduled_at: datetime,
        rolled_forward: bool = False,
    ) -> CommandResult:
        """Move the reminder at position #index to a new literal timestamp."""
        try:
            reminder, error = await self._resolve_index(phone, index, "reschedule")
            if error:
                return error

            updated = await self.store.update(reminder.id, scheduled_at=scheduled_at)
            if updated is None:
                return CommandResult(success=False, response=formatter.list_changed_message())

            logger.info(
                f"Reminder {reminder.id} rescheduled by {phone}: "
                f"{reminder.scheduled_at.isoformat()} -> {scheduled_at.isoformat()}"
            )
            return CommandResult(
                success=True,
                response=formatter.rescheduled_message(
                    index,
                    reminder.display_message,
                    reminder.scheduled_at,
                    scheduled_at,
                    rolled_forward,
                ),
                reminder=updated,
                affected=1,
            )

        except Exception as e:
            logger.error(f"Failed to reschedule reminder #{index} for {phone}: {e}", exc_info=True)
            return CommandResult(success=False, response=formatter.error_message("reschedule"))
