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

"""Tests for the Evolution API gateway."""

import json
import sys
from pathlib import Path

import httpx
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from reminders.gateway import EvolutionGateway, GatewayError


def make_gateway(handler):
    gateway = EvolutionGateway(
        base_url="http://evolution.test", api_key="secret", instance="lembrete"
    )
    gateway._client = httpx.AsyncClient(
        base_url="http://evolution.test",
        headers={"apikey": "secret"},
        transport=httpx.MockTransport(handler),
    )
    return gateway


class TestSend:
    @pytest.mark.asyncio
    async def test_success(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"key": {"id": "ABC"}})

        gateway = make_gateway(handler)
        result = await gateway.send("5521999999999", "🔔 *Lembrete:* Reunião")
        await gateway.close()

        assert result.success is True
        assert result.message_id == "ABC"
        assert requests[0].url.path == "/message/sendText/lembrete"
        assert requests[0].headers["apikey"] == "secret"
        assert json.loads(requests[0].content) == {
            "number": "5521999999999",
            "text": "🔔 *Lembrete:* Reunião",
        }

    @pytest.mark.asyncio
    async def test_api_error_message_is_reason(self):
        def handler(request):
            return httpx.Response(
                400,
                json={"status": 400, "error": "Bad Request", "response": {"message": ["Número não existe"]}},
            )

        gateway = make_gateway(handler)
        result = await gateway.send("5521999999999", "oi")

        assert result.success is False
        assert result.reason == "Número não existe"

    @pytest.mark.asyncio
    async def test_non_json_error(self):
        gateway = make_gateway(lambda request: httpx.Response(502, text="Bad Gateway"))
        result = await gateway.send("5521999999999", "oi")

        assert result.success is False
        assert result.reason == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_list_error_body(self):
        gateway = make_gateway(lambda request: httpx.Response(500, json=["Instância desconectada"]))
        result = await gateway.send("5521999999999", "oi")

        assert result.success is False
        assert "Instância desconectada" in result.reason

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway = make_gateway(handler)
        result = await gateway.send("5521999999999", "oi")

        assert result.success is False
        assert "connection refused" in result.reason


class TestConnectionState:
    @pytest.mark.asyncio
    async def test_state(self):
        gateway = make_gateway(
            lambda request: httpx.Response(200, json={"instance": {"state": "open"}})
        )
        assert await gateway.connection_state() == {"instance": {"state": "open"}}

    @pytest.mark.asyncio
    async def test_failure_raises_gateway_error(self):
        gateway = make_gateway(lambda request: httpx.Response(401, json={"error": "Unauthorized"}))
        with pytest.raises(GatewayError):
            await gateway.connection_state()


class TestWebhook:
    @pytest.mark.asyncio
    async def test_configure(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"webhook": {"enabled": True}})

        gateway = make_gateway(handler)
        data = await gateway.configure_webhook("https://bot.test/api/webhook/evolution")

        assert data == {"webhook": {"enabled": True}}
        assert requests[0].url.path == "/webhook/set/lembrete"
        sent = json.loads(requests[0].content)["webhook"]
        assert sent["url"] == "https://bot.test/api/webhook/evolution"
        assert sent["events"] == ["MESSAGES_UPSERT"]
        assert sent["enabled"] is True

    @pytest.mark.asyncio
    async def test_configure_rejected(self):
        gateway = make_gateway(
            lambda request: httpx.Response(400, json={"response": {"message": ["URL inválida"]}})
        )
        with pytest.raises(GatewayError, match="URL inválida"):
            await gateway.configure_webhook("nope")

    @pytest.mark.asyncio
    async def test_find(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"url": "https://bot.test/hook", "enabled": True})

        gateway = make_gateway(handler)

        assert await gateway.webhook_config() == {"url": "https://bot.test/hook", "enabled": True}
        assert requests[0].url.path == "/webhook/find/lembrete"
