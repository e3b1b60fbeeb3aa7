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
Response Formatter

User-facing WhatsApp replies (pt-BR, WhatsApp *bold* markup).
"""

from datetime import datetime
from typing import Optional

from .commands import CANCEL_KEYWORD, CONFIRM_TOKEN, EDIT_KEYWORD, RESCHEDULE_KEYWORD
from .models import Reminder, truncate
from .recurrence import describe_recurrence

ROLLED_FORWARD_NOTE = "⏰ *Horário já passou hoje, agendado para amanhã.*"

USAGE = {
    CANCEL_KEYWORD: "❌ Formato inválido. Use: *#cancelar [número]*\n\nExemplo: #cancelar 1",
    EDIT_KEYWORD: "❌ Formato inválido. Use: *#editar [número] [nova mensagem]*\n\n"
    "Exemplo: #editar 1 Reunião às 15h",
    RESCHEDULE_KEYWORD: "❌ Formato inválido. Use: *#reagendar [número] [nova data/hora]*\n\n"
    "Exemplos:\n• #reagendar 1 16:00\n• #reagendar 2 amanhã 09:00\n• #reagendar 3 25/12 20:00",
}

ACTION_VERBS = {
    "cancel": "cancelar",
    "edit": "editar",
    "reschedule": "reagendar",
}


def format_date(value: datetime) -> str:
    """Format a literal timestamp as "11/07/2025, 14:00"."""
    return value.strftime("%d/%m/%Y, %H:%M")


def help_message() -> str:
    return """🤖 *Ajuda - Comando #lembrete*

Para criar um lembrete, use o formato:
*#lembrete [quando] [hora] [mensagem]*

📅 *Exemplos de uso:*

⏰ *Hoje:*
• #lembrete 15:30 Reunião com cliente
• #lembrete 09:00 Tomar remédio

📆 *Data específica:*
• #lembrete 25/12 20:00 Ceia de Natal
• #lembrete 15/01/2026 14:30 Consulta médica

🗓️ *Dias da semana:*
• #lembrete segunda 09:00 Reunião de equipe
• #lembrete amanhã 07:00 Academia

🔁 *Recorrentes:*
• #lembrete 08:00 Tomar remédio todo dia
• #lembrete 09:00 Reunião toda segunda
• #lembrete 18:00 Academia segunda, quarta e sexta
• #lembrete 10:00 Pagar aluguel todo mês

📝 *Outros comandos:*
• *#lembrar* - lista seus lembretes pendentes
• *#cancelar N* - cancela o lembrete número N
• *#editar N texto* - altera a mensagem do lembrete N
• *#reagendar N data/hora* - muda a data do lembrete N

⚡ *Dicas:*
• Use horário no formato 24h (ex: 14:30)
• Datas no formato DD/MM ou DD/MM/AAAA
• Se o horário já passou hoje, será agendado para amanhã"""


def invalid_format_message() -> str:
    return """❌ Formato de lembrete inválido.

Exemplos de uso:
• #lembrete 15:30 Reunião com cliente
• #lembrete 15:30 25/12 Reunião de final de ano
• #lembrete amanhã 09:00 Consulta médica
• #lembrete segunda 14:00 Apresentação projeto
• #lembrete 25/12/2026 20:00 Ceia de Natal

Formato: #lembrete [quando] [hora] [mensagem]"""


def usage_message(keyword: str) -> str:
    return USAGE.get(keyword, invalid_format_message())


def created_message(reminder: Reminder, rolled_forward: bool = False) -> str:
    lines = [
        "✅ Lembrete criado com sucesso!",
        "",
        f"📅 Data: {format_date(reminder.scheduled_at)}",
        f"💬 Mensagem: {reminder.display_message}",
    ]
    if reminder.is_recurring:
        lines.append(
            f"🔁 Repetição: {describe_recurrence(reminder.recurrence_type, reminder.recurrence_pattern)}"
        )
    if rolled_forward:
        lines.extend(["", ROLLED_FORWARD_NOTE])
    lines.extend(["", "Você receberá uma mensagem no horário agendado."])
    return "\n".join(lines)


def list_message(reminders: list[Reminder]) -> str:
    if not reminders:
        return "📝 *Seus Lembretes*\n\n🎉 Você não tem lembretes pendentes!"

    lines = ["📝 *Seus Lembretes Pendentes*", ""]
    for position, reminder in enumerate(reminders, start=1):
        lines.append(f"{position}. 📅 {format_date(reminder.scheduled_at)}")
        lines.append(f"   💬 {reminder.display_message}")
        if reminder.is_recurring:
            label = describe_recurrence(reminder.recurrence_type, reminder.recurrence_pattern)
            lines.append(f"   🔁 {label}")
        lines.append("")

    lines.append("Para cancelar: *#cancelar [número]*")
    lines.append("Para editar: *#editar [número] [nova mensagem]*")
    lines.append("Para reagendar: *#reagendar [número] [nova data/hora]*")
    return "\n".join(lines)


def no_pending_message(action: str) -> str:
    return f"❌ Você não tem lembretes pendentes para {ACTION_VERBS[action]}."


def invalid_index_message(count: int) -> str:
    return (
        f"❌ Número inválido. Você tem {count} lembrete(s) pendente(s).\n\n"
        f"Use *#lembrar* para ver a lista e escolha um número entre 1 e {count}."
    )


def cancel_confirmation_message(index: int, reminder: Reminder) -> str:
    lines = [
        "⚠️ *Confirmar Cancelamento*",
        "",
        f"Lembrete #{index}:",
        f"📅 {format_date(reminder.scheduled_at)}",
        f"💬 {truncate(reminder.display_message)}",
    ]
    if reminder.is_recurring:
        lines.extend(["", "🔁 Este lembrete é recorrente: toda a série será cancelada."])
    lines.extend([
        "",
        "Tem certeza que deseja cancelar este lembrete?",
        f"Para confirmar, envie: *{CANCEL_KEYWORD} {index} {CONFIRM_TOKEN}*",
    ])
    return "\n".join(lines)


def canceled_message(index: int, reminder: Reminder, series_count: Optional[int] = None) -> str:
    lines = ["✅ *Lembrete Cancelado*", ""]
    if series_count is not None:
        lines.append(
            f"Série do lembrete #{index} cancelada com sucesso "
            f"({series_count} ocorrência(s) pendente(s) removida(s))."
        )
    else:
        lines.append(f"Lembrete #{index} cancelado com sucesso.")
    lines.append(f"💬 {truncate(reminder.display_message)}")
    return "\n".join(lines)


def edited_message(index: int, old_message: str, new_message: str, scheduled_at: datetime) -> str:
    return "\n".join([
        "✅ *Lembrete Editado*",
        "",
        f"Lembrete #{index} editado com sucesso.",
        f"📅 {format_date(scheduled_at)}",
        f"📝 *Mensagem anterior:* {truncate(old_message)}",
        f"🆕 *Nova mensagem:* {truncate(new_message)}",
    ])


def rescheduled_message(
    index: int,
    message: str,
    old_date: datetime,
    new_date: datetime,
    rolled_forward: bool = False,
) -> str:
    lines = [
        "✅ *Lembrete Reagendado*",
        "",
        f"Lembrete #{index} reagendado com sucesso.",
        f"💬 {truncate(message)}",
        f"⏰ *Data anterior:* {format_date(old_date)}",
        f"🆕 *Nova data:* {format_date(new_date)}",
    ]
    if rolled_forward:
        lines.extend(["", ROLLED_FORWARD_NOTE])
    return "\n".join(lines)


def list_changed_message() -> str:
    return (
        "⚠️ Este lembrete não está mais pendente (já foi enviado ou cancelado).\n"
        "Envie *#lembrar* para ver a lista atualizada."
    )


def error_message(action: str) -> str:
    messages = {
        "create": "❌ Erro interno ao processar lembrete. Tente novamente em alguns minutos.",
        "list": "❌ Erro ao buscar seus lembretes. Tente novamente em alguns minutos.",
        "cancel": "❌ Erro ao cancelar lembrete. Tente novamente em alguns minutos.",
        "edit": "❌ Erro ao editar lembrete. Tente novamente em alguns minutos.",
        "reschedule": "❌ Erro ao reagendar lembrete. Tente novamente em alguns minutos.",
    }
    return messages.get(action, "❌ Erro interno do sistema. Tente novamente em alguns minutos.")
