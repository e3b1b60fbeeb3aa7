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
Inbound Routing

Turns Evolution API webhook payloads into InboundMessage events and runs
them through parse -> handler -> reply.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from .commands import UnrecognizedCommand, parse_command
from .manager import ReminderManager
from .models import CommandResult, InboundMessage, literal_now

logger = logging.getLogger("lembrete.reminders.inbound")

MESSAGE_EVENTS = {
    "message.upsert",
    "messages.upsert",
    "message.received",
    "messages.received",
}


def _message_text(message: dict) -> Optional[str]:
    if not isinstance(message, dict):
        return None
    text = message.get("conversation")
    if not text:
        extended = message.get("extendedTextMessage") or {}
        text = extended.get("text") if isinstance(extended, dict) else None
    return text or None


def extract_inbound(payload: Any, received_at: datetime) -> Optional[InboundMessage]:
    """
    Extract a chat message from an Evolution webhook payload.

    Args:
        payload: Decoded JSON body of the webhook call
        received_at: Literal-clock time of arrival

    Returns:
        InboundMessage, or None for non-message events, own messages and
        payloads without text
    """
    if not isinstance(payload, dict):
        return None

    event = str(payload.get("event") or "").lower()
    if event not in MESSAGE_EVENTS:
        return None

    data = payload.get("data")
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        return None

    key = data.get("key") or {}
    if key.get("fromMe"):
        return None

    remote_jid = key.get("remoteJid") or ""
    sender = remote_jid.split("@", 1)[0]
    text = _message_text(data.get("message"))
    if not sender or not text:
        return None

    return InboundMessage(sender_phone=sender, text=text.strip(), received_at=received_at)


class InboundRouter:
    """Routes inbound chat messages to the reminder manager and replies."""

    def __init__(
        self,
        manager: ReminderManager,
        gateway,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.manager = manager
        self.gateway = gateway
        self.clock = clock or (lambda: literal_now(manager.config.timezone))

    async def handle(
        self, inbound: InboundMessage, send_reply: bool = True
    ) -> Optional[CommandResult]:
        """
        Handle one inbound message.

        Args:
            inbound: Normalized inbound message
            send_reply: Deliver the reply through the gateway (False for dry runs)

        Returns:
            CommandResult that was (or would be) replied, or None if ignored
        """
        command = parse_command(inbound.text, self.clock())
        if isinstance(command, UnrecognizedCommand):
            return None

        logger.info(f"{type(command).__name__} from {inbound.sender_phone}")
        result = await self.manager.handle(inbound.sender_phone, command)
        if result is None:
            return None

        if send_reply:
            await self._reply(inbound.sender_phone, result.response)
        return result

    async def _reply(self, phone: str, text: str) -> None:
        try:
            outcome = await self.gateway.send(phone, text)
            if not outcome.success:
                logger.warning(f"Reply to {phone} not delivered: {outcome.reason}")
        except Exception as e:
            logger.error(f"Failed to send reply to {phone}: {e}", exc_info=True)
