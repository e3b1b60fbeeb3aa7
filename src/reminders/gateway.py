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
Messaging Gateway

Outbound WhatsApp delivery through an Evolution API instance.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger("lembrete.reminders.gateway")


@dataclass
class SendResult:
    """Outcome of a send attempt."""

    success: bool
    reason: Optional[str] = None
    message_id: Optional[str] = None


class GatewayError(Exception):
    """Raised when the messaging provider cannot be reached or configured."""

    pass


class EvolutionGateway:
    """Client for the Evolution API text-message endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        instance: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url or os.getenv("EVOLUTION_API_URL", "http://localhost:8080")
        self.api_key = api_key or os.getenv("EVOLUTION_API_KEY")
        self.instance = instance or os.getenv("WHATSAPP_INSTANCE", "")

        if not self.api_key:
            logger.warning("EVOLUTION_API_KEY not set - message delivery will fail authentication")
        if not self.instance:
            logger.warning("WHATSAPP_INSTANCE not set - message delivery will fail")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "apikey": self.api_key or "",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the HTTP client"""
        await self._client.aclose()

    @staticmethod
    def _message_id(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        key = body.get("key") if isinstance(body, dict) else None
        return key.get("id") if isinstance(key, dict) else None

    @staticmethod
    def _error_reason(response: httpx.Response) -> str:
        """Extract the provider's error message from an error response."""
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or f"HTTP {response.status_code}"

        if not isinstance(body, dict):
            return str(body)[:200] or f"HTTP {response.status_code}"

        detail = body.get("response") or {}
        message = detail.get("message") if isinstance(detail, dict) else None
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
        return str(message or body.get("error") or f"HTTP {response.status_code}")

    async def send(self, phone: str, text: str) -> SendResult:
        """
        Send a text message.

        Args:
            phone: Normalized recipient phone (digits with country code)
            text: Message body

        Returns:
            SendResult with success flag and failure reason
        """
        try:
            response = await self._client.post(
                f"/message/sendText/{self.instance}",
                json={"number": phone, "text": text},
            )
            response.raise_for_status()
            logger.info(f"Message sent to {phone}")
            return SendResult(success=True, message_id=self._message_id(response))
        except httpx.HTTPStatusError as e:
            reason = self._error_reason(e.response)
            logger.error(f"Failed to send message to {phone} (HTTP {e.response.status_code}): {reason}")
            return SendResult(success=False, reason=reason)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send message to {phone}: {e}")
            return SendResult(success=False, reason=str(e) or type(e).__name__)

    async def connection_state(self) -> dict:
        """
        Get the WhatsApp instance connection state.

        Raises:
            GatewayError: If the API cannot be queried
        """
        try:
            response = await self._client.get(f"/instance/connectionState/{self.instance}")
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise GatewayError(f"Falha ao conectar com a Evolution API: {e}") from e

    async def configure_webhook(self, url: str, events: Optional[list[str]] = None) -> dict:
        """
        Point the instance's webhook at this service.

        Args:
            url: Public URL of the inbound webhook endpoint
            events: Evolution event names to subscribe (defaults to MESSAGES_UPSERT)

        Raises:
            GatewayError: If the API rejects the configuration
        """
        payload = {
            "webhook": {
                "enabled": True,
                "url": url,
                "byEvents": False,
                "base64": False,
                "events": events or ["MESSAGES_UPSERT"],
            }
        }
        try:
            response = await self._client.post(f"/webhook/set/{self.instance}", json=payload)
            response.raise_for_status()
            logger.info(f"Webhook for instance {self.instance} set to {url}")
            return response.json()
        except httpx.HTTPStatusError as e:
            raise GatewayError(
                f"Falha ao configurar webhook: {self._error_reason(e.response)}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise GatewayError(f"Falha ao configurar webhook: {e}") from e

    async def webhook_config(self) -> dict:
        """
        Get the instance's current webhook configuration.

        Raises:
            GatewayError: If the API cannot be queried
        """
        try:
            response = await self._client.get(f"/webhook/find/{self.instance}")
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise GatewayError(f"Falha ao consultar webhook: {e}") from e
