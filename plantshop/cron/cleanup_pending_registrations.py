"""
Модуль: cron/cleanup_pending_registrations.py
Описание: Cron-задача для удаления просроченных заявок на регистрацию
Проект: Plant Shop Backend

Заявка живёт PENDING_REGISTRATION_TTL_HOURS часов (по умолчанию 24).
Просроченные заявки и так не читаются, этот скрипт просто
освобождает таблицу.

Запуск:
    # Вручную
    python -m plantshop.cron.cleanup_pending_registrations

    # Через cron (раз в час)
    0 * * * * cd /path/to/app && python -m plantshop.cron.cleanup_pending_registrations
"""

import asyncio
import logging

from plantshop.database.connection import init_db, session_scope
from plantshop.services.pending_registrations import PendingRegistrationStore
from plantshop.utils.logger import setup_logging


logger = logging.getLogger("plantshop.cron")


async def main() -> int:
    """
    Удалить просроченные заявки.

    Возвращает:
        int: Сколько заявок удалено
    """
    setup_logging()
    init_db()
    logger.info("🧹 Запуск очистки просроченных заявок на регистрацию...")

    with session_scope() as db:
        removed = PendingRegistrationStore(db).cleanup_expired()

    if removed:
        logger.info(f"  Удалено заявок: {removed}")
    else:
        logger.info("  Просроченных заявок нет")

    logger.info("✅ Очистка завершена")
    return removed


if __name__ == "__main__":
    asyncio.run(main())
