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

"""Tests for the HTTP endpoints."""

import sys
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from aiohttp import test_utils

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from reminders.config import ReminderConfig
from reminders.gateway import GatewayError, SendResult
from reminders.manager import ReminderManager
from reminders.store import InMemoryReminderStore, StoreError
from whatsapp_bot import WhatsAppBot

NOW = datetime(2025, 7, 11, 15, 30)


@pytest.fixture(autouse=True)
def no_analytics():
    with patch("reminders.manager.track") as track:
        yield track


@pytest.fixture
def store():
    return InMemoryReminderStore()


@pytest.fixture
def bot(store):
    bot = WhatsAppBot(config=ReminderConfig())
    bot.manager = ReminderManager(store, config=bot.config, clock=lambda: NOW)
    bot.gateway = MagicMock()
    bot.gateway.send = AsyncMock(return_value=SendResult(success=True, message_id="ABC"))
    bot.gateway.configure_webhook = AsyncMock(return_value={"enabled": True})
    bot.gateway.webhook_config = AsyncMock(return_value={"url": "https://example.test/hook"})
    return bot


@pytest_asyncio.fixture
async def client(bot):
    async with test_utils.TestClient(test_utils.TestServer(bot.build_app())) as client:
        yield client


class TestCreateReminder:
    @pytest.mark.asyncio
    async def test_creates_reminder(self, client, store):
        response = await client.post("/api/reminder", json={
            "message": "Pagar conta de luz",
            "phone": "(21) 99999-9999",
            "scheduledAt": "2025-07-12T09:00:00",
        })

        assert response.status == 201
        body = await response.json()
        assert body["phone"] == "5521999999999"
        assert body["message"] == "🔔 *Lembrete:* Pagar conta de luz"
        assert body["scheduled_at"] == "2025-07-12T09:00:00"
        assert body["status"] == "PENDING"
        assert len(store.rows) == 1

    @pytest.mark.asyncio
    async def test_utc_timestamp_is_converted_to_local_clock(self, client):
        response = await client.post("/api/reminder", json={
            "message": "Pagar conta de luz",
            "phone": "5521999999999",
            "scheduledAt": "2025-07-12T12:00:00Z",
        })

        assert response.status == 201
        assert (await response.json())["scheduled_at"] == "2025-07-12T09:00:00"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"phone": "5521999999999", "scheduledAt": "2025-07-12T09:00:00"},
        {"message": "   ", "phone": "5521999999999", "scheduledAt": "2025-07-12T09:00:00"},
        {"message": "Pagar conta", "phone": "123", "scheduledAt": "2025-07-12T09:00:00"},
        {"message": "Pagar conta", "phone": "5521999999999", "scheduledAt": "amanhã"},
        {"message": "Pagar conta", "phone": "5521999999999"},
    ])
    async def test_invalid_body(self, client, store, body):
        response = await client.post("/api/reminder", json=body)

        assert response.status == 400
        assert "error" in await response.json()
        assert store.rows == {}

    @pytest.mark.asyncio
    async def test_store_failure(self, client, store):
        store.create = AsyncMock(side_effect=StoreError("down"))

        response = await client.post("/api/reminder", json={
            "message": "Pagar conta",
            "phone": "5521999999999",
            "scheduledAt": "2025-07-12T09:00:00",
        })

        assert response.status == 500
        assert await response.json() == {"error": "Erro ao agendar lembrete"}


class TestTestMessage:
    @pytest.mark.asyncio
    async def test_sends_through_gateway(self, client, bot):
        response = await client.post(
            "/api/test-message", json={"phone": "5521999999999", "message": "Olá"}
        )

        assert response.status == 200
        assert await response.json() == {"success": True, "messageId": "ABC"}
        bot.gateway.send.assert_awaited_once_with("5521999999999", "Olá")

    @pytest.mark.asyncio
    async def test_send_failure(self, client, bot):
        bot.gateway.send.return_value = SendResult(success=False, reason="offline")

        response = await client.post(
            "/api/test-message", json={"phone": "5521999999999", "message": "Olá"}
        )

        assert response.status == 500
        assert (await response.json())["success"] is False

    @pytest.mark.asyncio
    async def test_invalid_phone(self, client, bot):
        response = await client.post("/api/test-message", json={"phone": "12", "message": "Olá"})

        assert response.status == 400
        bot.gateway.send.assert_not_awaited()


class TestWebhookConfiguration:
    @pytest.mark.asyncio
    async def test_configure(self, client, bot):
        response = await client.post(
            "/api/webhook/configure", json={"webhookUrl": "https://example.test/hook"}
        )

        assert response.status == 200
        assert await response.json() == {"success": True, "data": {"enabled": True}}
        bot.gateway.configure_webhook.assert_awaited_once_with("https://example.test/hook")

    @pytest.mark.asyncio
    async def test_configure_requires_url(self, client, bot):
        response = await client.post("/api/webhook/configure", json={})

        assert response.status == 400
        bot.gateway.configure_webhook.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_config(self, client):
        response = await client.get("/api/webhook/config")
        assert await response.json() == {
            "success": True,
            "data": {"url": "https://example.test/hook"},
        }

    @pytest.mark.asyncio
    async def test_gateway_error(self, client, bot):
        bot.gateway.webhook_config.side_effect = GatewayError("unauthorized")

        response = await client.get("/api/webhook/config")

        assert response.status == 500
        assert await response.json() == {"success": False, "error": "unauthorized"}


class TestStatus:
    @pytest.mark.asyncio
    async def test_status(self, client):
        body = await (await client.get("/api/webhook/status")).json()

        assert body["status"] == "active"
        assert body["timestamp"].endswith("Z")
