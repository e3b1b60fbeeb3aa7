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
Reminder Cleanup CLI

Deletes reminders that will never be delivered again: sent, cancelled,
expired one-off and retry-exhausted reminders older than --days-old.
Pending recurring reminders are always kept.

Usage:
    # Preview what would be deleted
    python scripts/cleanup_reminders.py --dry-run

    # Preview with sample rows per category
    python scripts/cleanup_reminders.py --dry-run --details

    # Delete everything older than 30 days
    python scripts/cleanup_reminders.py --days-old 30
"""

import argparse
import asyncio
import os
import sys
from datetime import timedelta
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import asyncpg
from dotenv import load_dotenv

from reminders.config import ReminderConfig
from reminders.models import literal_now, strip_prefix, truncate

load_dotenv()

BATCH_SIZE = 100

# Each category: (label, WHERE clause). $1 = cutoff, $2 = max_retries when used
CATEGORIES = {
    "sent": (
        "Lembretes enviados",
        "status = 'SENT' AND sent_at < $1",
    ),
    "canceled": (
        "Lembretes cancelados",
        "status = 'CANCELED' AND sent_at < $1",
    ),
    "expired": (
        "Lembretes expirados (não recorrentes)",
        "is_sent = FALSE AND is_recurring = FALSE AND retry_count < $2 AND scheduled_at < $1",
    ),
    "exhausted": (
        "Lembretes com falhas",
        "is_sent = FALSE AND retry_count >= $2 AND scheduled_at < $1",
    ),
}


def query_args(where: str, cutoff, max_retries: int) -> tuple:
    """Bind max_retries only for clauses that reference it."""
    return (cutoff, max_retries) if "$2" in where else (cutoff,)


async def count_category(pool: asyncpg.Pool, where: str, cutoff, max_retries: int) -> int:
    return await pool.fetchval(
        f"SELECT COUNT(*) FROM reminders WHERE {where}",
        *query_args(where, cutoff, max_retries),
    )


async def show_details(pool: asyncpg.Pool, cutoff, max_retries: int) -> None:
    """Print up to 5 sample rows per category."""
    for label, where in CATEGORIES.values():
        rows = await pool.fetch(
            f"""
            SELECT id, phone, message, scheduled_at, sent_at, retry_count, last_error
            FROM reminders
            WHERE {where}
            ORDER BY scheduled_at DESC
            LIMIT 5
            """,
            *query_args(where, cutoff, max_retries),
        )
        if not rows:
            continue

        print(f"\n{label} (mostrando até 5):")
        for i, r in enumerate(rows, start=1):
            when = r["scheduled_at"].strftime("%d/%m/%Y %H:%M")
            line = f"  {i}. [{when}] {r['phone']}: {truncate(strip_prefix(r['message']))}"
            if r["last_error"]:
                line += f" ({truncate(r['last_error'], 40)})"
            print(line)


async def delete_category(
    pool: asyncpg.Pool, where: str, cutoff, max_retries: int
) -> int:
    """Delete matching reminders in batches, returning the total removed."""
    deleted = 0
    while True:
        result = await pool.execute(
            f"""
            DELETE FROM reminders
            WHERE id IN (
                SELECT id FROM reminders WHERE {where} LIMIT {BATCH_SIZE}
            )
            """,
            *query_args(where, cutoff, max_retries),
        )
        # asyncpg returns the command tag, e.g. "DELETE 100"
        count = int(result.split()[-1])
        deleted += count
        if count < BATCH_SIZE:
            return deleted


async def cleanup(
    pool: asyncpg.Pool,
    dry_run: bool = False,
    details: bool = False,
    max_retries: int = 3,
    days_old: int = 7,
) -> dict[str, int]:
    """
    Delete (or preview deleting) stale reminders.

    Returns:
        Count per category plus "recurring_kept" and "total"
    """
    config = ReminderConfig.from_env()
    cutoff = literal_now(config.timezone) - timedelta(days=days_old)

    print(f"Analisando lembretes anteriores a {cutoff.strftime('%d/%m/%Y %H:%M')}...\n")

    stats: dict[str, int] = {}
    for name, (_, where) in CATEGORIES.items():
        stats[name] = await count_category(pool, where, cutoff, max_retries)

    stats["recurring_kept"] = await pool.fetchval(
        "SELECT COUNT(*) FROM reminders WHERE is_sent = FALSE AND is_recurring = TRUE AND retry_count < $1",
        max_retries,
    )
    stats["total"] = sum(stats[name] for name in CATEGORIES)

    print("Estatísticas de limpeza:")
    for name, (label, _) in CATEGORIES.items():
        print(f"  {label}: {stats[name]}")
    print(f"  Lembretes recorrentes mantidos: {stats['recurring_kept']}")
    print(f"  Total a ser deletado: {stats['total']}")

    if details:
        await show_details(pool, cutoff, max_retries)

    if dry_run:
        print("\nMODO DRY RUN - nenhum lembrete foi deletado.")
        print("Execute sem --dry-run para efetuar a limpeza.")
        return stats

    if stats["total"] == 0:
        print("\nNenhum lembrete precisa ser removido.")
        return stats

    deleted = 0
    for name, (label, where) in CATEGORIES.items():
        if stats[name]:
            count = await delete_category(pool, where, cutoff, max_retries)
            deleted += count
            print(f"  {label}: {count} removido(s)")

    print(f"\nLimpeza concluída! {deleted} lembrete(s) removido(s).")
    return stats


async def main():
    parser = argparse.ArgumentParser(description="Remove old reminders from the database")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without deleting",
    )
    parser.add_argument(
        "--details",
        action="store_true",
        help="Show sample reminders for each category",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=3,
        help="Retry count at which a reminder counts as failed (default: 3)",
    )
    parser.add_argument(
        "--days-old",
        type=int,
        default=7,
        help="Only delete reminders older than this many days (default: 7)",
    )
    args = parser.parse_args()

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("Error: DATABASE_URL environment variable not set")
        sys.exit(1)

    pool = await asyncpg.create_pool(database_url, min_size=1, max_size=2)

    try:
        await cleanup(
            pool,
            dry_run=args.dry_run,
            details=args.details,
            max_retries=args.max_retries,
            days_old=args.days_old,
        )
    finally:
        await pool.close()


if __name__ == "__main__":
    asyncio.run(main())
