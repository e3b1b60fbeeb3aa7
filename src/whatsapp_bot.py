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

import asyncio
import os
from datetime import datetime, timezone
from typing import Optional

import asyncpg
from aiohttp import web
from dotenv import load_dotenv

import analytics
from reminders import (
    EvolutionGateway,
    GatewayError,
    InboundMessage,
    InboundRouter,
    InMemoryReminderStore,
    PhoneFormatError,
    PostgresReminderStore,
    RecurrenceEngine,
    ReminderConfig,
    ReminderManager,
    ReminderScheduler,
    StoreError,
    TimeParseError,
    extract_inbound,
    literal_now,
    normalize_phone,
    parse_iso_timestamp,
)

load_dotenv()

import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("lembrete")


class WhatsAppBot:
    """Webhook server plus background delivery for WhatsApp reminders."""

    def __init__(self, config: Optional[ReminderConfig] = None):
        self.config = config or ReminderConfig.from_env()
        self.db_pool: Optional[asyncpg.Pool] = None
        self.gateway: Optional[EvolutionGateway] = None
        self.manager: Optional[ReminderManager] = None
        self.router: Optional[InboundRouter] = None
        self.scheduler: Optional[ReminderScheduler] = None
        self._background: set[asyncio.Task] = set()

    def now(self) -> datetime:
        return literal_now(self.config.timezone)

    async def setup(self) -> None:
        """Create the store, gateway, manager and scheduler."""
        database_url = os.getenv("DATABASE_URL")
        logger.info(f"Setup: DATABASE_URL={'set' if database_url else 'missing'}")
        logger.info(f"Setup: EVOLUTION_API_URL={os.getenv('EVOLUTION_API_URL', 'default')}")
        logger.info(f"Setup: timezone={self.config.timezone}")

        if database_url:
            self.db_pool = await asyncpg.create_pool(database_url)
            analytics.init(self.db_pool)
            store = PostgresReminderStore(self.db_pool)
            logger.info("Reminder store: PostgreSQL")
        else:
            store = InMemoryReminderStore()
            logger.warning("DATABASE_URL not set - reminders are kept in memory and lost on restart")

        self.gateway = EvolutionGateway()
        try:
            state = await self.gateway.connection_state()
            logger.info(f"WhatsApp instance state: {state.get('instance', state)}")
        except GatewayError as e:
            logger.warning(f"Could not check WhatsApp instance: {e}")

        recurrence = RecurrenceEngine(store, self.config, self.now)
        self.manager = ReminderManager(store, recurrence, self.config, self.now)
        self.router = InboundRouter(self.manager, self.gateway, self.now)
        self.scheduler = ReminderScheduler(store, self.gateway, recurrence, self.config, self.now)
        self.scheduler.start()

    async def shutdown(self) -> None:
        if self.scheduler:
            self.scheduler.stop()
        for task in list(self._background):
            task.cancel()
        if self.gateway:
            await self.gateway.close()
        if self.db_pool:
            await self.db_pool.close()
        await analytics.shutdown()
        logger.info("Shutdown complete")

    # =========================================================================
    # HTTP handlers
    # =========================================================================

    async def _process(self, inbound: InboundMessage) -> None:
        try:
            await self.router.handle(inbound)
        except Exception as e:
            logger.error(f"Error handling message from {inbound.sender_phone}: {e}", exc_info=True)

    async def handle_webhook(self, request: web.Request) -> web.Response:
        """Acknowledge immediately and process the message in the background."""
        try:
            payload = await request.json()
        except ValueError:
            return web.json_response({"error": "invalid JSON"}, status=400)

        inbound = extract_inbound(payload, self.now())
        if inbound is not None:
            task = asyncio.create_task(self._process(inbound))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        return web.json_response({"received": True})

    async def handle_status(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "active",
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "message": "Webhook está funcionando corretamente",
        })

    async def handle_test(self, request: web.Request) -> web.Response:
        """Run a message through the router without sending the reply."""
        try:
            body = await request.json()
        except ValueError:
            body = {}

        phone = body.get("phone") if isinstance(body, dict) else None
        message = body.get("message") if isinstance(body, dict) else None
        if not phone or not message:
            return web.json_response({"error": "phone e message são obrigatórios"}, status=400)

        inbound = InboundMessage(sender_phone=str(phone), text=str(message), received_at=self.now())
        try:
            result = await self.router.handle(inbound, send_reply=False)
        except Exception as e:
            logger.error(f"Webhook test failed: {e}", exc_info=True)
            return web.json_response(
                {"success": False, "error": "Erro interno do servidor"}, status=500
            )

        return web.json_response({
            "success": True,
            "result": None if result is None else {
                "success": result.success,
                "response": result.response,
            },
        })

    async def handle_create_reminder(self, request: web.Request) -> web.Response:
        """Schedule a one-off reminder: {message, phone, scheduledAt}."""
        try:
            body = await request.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        message = body.get("message")
        if not message or not isinstance(message, str) or not message.strip():
            return web.json_response({"error": "Mensagem inválida"}, status=400)

        try:
            scheduled_at = parse_iso_timestamp(body.get("scheduledAt"), self.config.timezone)
            reminder = await self.manager.schedule_reminder(
                str(body.get("phone") or ""), message, scheduled_at
            )
        except (TimeParseError, PhoneFormatError) as e:
            return web.json_response({"error": str(e)}, status=400)
        except StoreError as e:
            logger.error(f"Failed to schedule reminder via API: {e}", exc_info=True)
            return web.json_response({"error": "Erro ao agendar lembrete"}, status=500)

        return web.json_response(reminder.to_dict(), status=201)

    async def handle_test_message(self, request: web.Request) -> web.Response:
        """Send a message straight through the gateway."""
        try:
            body = await request.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        message = body.get("message")
        try:
            phone = normalize_phone(str(body.get("phone") or ""))
        except PhoneFormatError as e:
            return web.json_response({"success": False, "error": str(e)}, status=400)
        if not message or not isinstance(message, str):
            return web.json_response({"success": False, "error": "Mensagem inválida"}, status=400)

        result = await self.gateway.send(phone, message)
        if not result.success:
            logger.warning(f"Test message to {phone} failed: {result.reason}")
            return web.json_response(
                {"success": False, "error": "Falha ao enviar mensagem"}, status=500
            )
        return web.json_response({"success": True, "messageId": result.message_id})

    async def handle_configure_webhook(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            body = {}

        webhook_url = body.get("webhookUrl") if isinstance(body, dict) else None
        if not webhook_url:
            return web.json_response(
                {"success": False, "error": "webhookUrl é obrigatório"}, status=400
            )

        try:
            data = await self.gateway.configure_webhook(str(webhook_url))
        except GatewayError as e:
            logger.error(f"Webhook configuration failed: {e}")
            return web.json_response({"success": False, "error": str(e)}, status=500)
        return web.json_response({"success": True, "data": data})

    async def handle_webhook_config(self, request: web.Request) -> web.Response:
        try:
            data = await self.gateway.webhook_config()
        except GatewayError as e:
            logger.error(f"Webhook lookup failed: {e}")
            return web.json_response({"success": False, "error": str(e)}, status=500)
        return web.json_response({"success": True, "data": data})

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/reminder", self.handle_create_reminder)
        app.router.add_post("/api/test-message", self.handle_test_message)
        app.router.add_post("/api/webhook/evolution", self.handle_webhook)
        app.router.add_get("/api/webhook/status", self.handle_status)
        app.router.add_post("/api/webhook/test", self.handle_test)
        app.router.add_post("/api/webhook/configure", self.handle_configure_webhook)
        app.router.add_get("/api/webhook/config", self.handle_webhook_config)
        return app


async def main():
    """Run the webhook server and the reminder scheduler."""
    port = int(os.getenv("PORT", "3000"))

    bot = WhatsAppBot()
    await bot.setup()

    runner = web.AppRunner(bot.build_app())
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    logger.info(f"Webhook server listening on port {port}")

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        await bot.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
