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

"""Tests for reminder models, helpers and configuration."""

import sys
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from reminders.config import ReminderConfig
from reminders.models import (
    REMINDER_PREFIX,
    PhoneFormatError,
    RecurrenceType,
    Reminder,
    ReminderStatus,
    describe_error,
    ensure_prefix,
    literal_now,
    normalize_phone,
    strip_prefix,
    truncate,
)


class TestReminderConfig:
    def test_defaults(self):
        config = ReminderConfig()
        assert config.timezone == "America/Sao_Paulo"
        assert config.max_retries == 3
        assert config.poll_interval_seconds == 60
        assert config.pending_limit == 20

    def test_from_env_default(self):
        with patch.dict("os.environ", {}, clear=True):
            config = ReminderConfig.from_env()
            assert config == ReminderConfig()

    def test_from_env_custom_values(self):
        with patch.dict("os.environ", {
            "REMINDER_TIMEZONE": "America/Manaus",
            "REMINDER_MAX_RETRIES": "5",
            "REMINDER_SEND_TIMEOUT": "2.5",
            "REMINDER_PENDING_LIMIT": "10",
        }):
            config = ReminderConfig.from_env()
            assert config.timezone == "America/Manaus"
            assert config.max_retries == 5
            assert config.send_timeout_seconds == 2.5
            assert config.pending_limit == 10


class TestNormalizePhone:
    @pytest.mark.parametrize("raw, expected", [
        ("5521999999999", "5521999999999"),
        ("5521999999999@s.whatsapp.net", "5521999999999"),
        ("5521999999999@c.us", "5521999999999"),
        ("+55 (21) 99999-9999", "5521999999999"),
        ("21999999999", "5521999999999"),
        ("552133334444", "552133334444"),
    ])
    def test_valid(self, raw, expected):
        assert normalize_phone(raw) == expected

    @pytest.mark.parametrize("raw", ["", "123", "999999999", "123456789012345"])
    def test_invalid(self, raw):
        with pytest.raises(PhoneFormatError, match="Número de telefone inválido"):
            normalize_phone(raw)


class TestMessageHelpers:
    def test_ensure_prefix_is_idempotent(self):
        once = ensure_prefix("Reunião")
        assert once == REMINDER_PREFIX + "Reunião"
        assert ensure_prefix(once) == once

    def test_strip_prefix(self):
        assert strip_prefix(REMINDER_PREFIX + "Reunião") == "Reunião"
        assert strip_prefix("Reunião") == "Reunião"

    def test_truncate(self):
        assert truncate("curto") == "curto"
        assert truncate("a" * 60) == "a" * 50 + "..."

    def test_describe_error(self):
        assert describe_error(ValueError("falhou")) == "falhou"
        assert describe_error("motivo") == "motivo"
        assert describe_error(ValueError()) == "Erro desconhecido"
        assert describe_error(None) == "Erro desconhecido"
        assert describe_error({"code": 1}) == "Erro desconhecido"
        assert len(describe_error("x" * 300)) == 255


class TestLiteralNow:
    def test_naive_and_minute_aligned(self):
        now = literal_now("America/Sao_Paulo")
        assert now.tzinfo is None
        assert now.second == 0
        assert now.microsecond == 0


class TestReminder:
    def test_from_record(self):
        record = {
            "id": "abc",
            "phone": "5521999999999",
            "message": REMINDER_PREFIX + "Tomar remédio",
            "scheduled_at": datetime(2025, 7, 12, 8, 0),
            "is_sent": False,
            "sent_at": None,
            "retry_count": None,
            "last_error": None,
            "status": "PENDING",
            "is_recurring": True,
            "recurrence_type": "DAILY",
            "recurrence_pattern": "1",
            "series_id": "s1",
            "parent_id": None,
            "end_date": None,
            "claimed_at": None,
            "created_at": datetime(2025, 7, 11, 15, 30),
            "unknown_column": "ignored",
        }

        reminder = Reminder.from_record(record)

        assert reminder.status is ReminderStatus.PENDING
        assert reminder.recurrence_type is RecurrenceType.DAILY
        assert reminder.retry_count == 0
        assert reminder.display_message == "Tomar remédio"
        assert reminder.has_recurrence is True

    def test_has_recurrence_requires_series(self):
        reminder = Reminder(
            id="x",
            phone="5521999999999",
            message="m",
            scheduled_at=datetime(2025, 7, 12, 8, 0),
            is_recurring=True,
            recurrence_type=RecurrenceType.DAILY,
            recurrence_pattern="1",
        )
        assert reminder.has_recurrence is False
