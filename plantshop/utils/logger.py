"""
Модуль: utils/logger.py
Описание: Настройка логирования
Проект: Plant Shop Backend

Все модули берут свой логгер так:
    logger = logging.getLogger("plantshop.orders")

А настройка обработчиков делается один раз при старте
(main.py, bot.py, cron-скрипты):
    from plantshop.utils.logger import setup_logging
    setup_logging()
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from plantshop.config import settings


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """
    Настроить корневой логгер приложения.

    Консольный вывод есть всегда, файловый с ротацией
    только если задан LOG_FILE.

    Параметры:
        level: Уровень логирования (по умолчанию из настроек)
        log_file: Путь к файлу логов (по умолчанию из настроек)

    Возвращает:
        logging.Logger: Логгер "plantshop"
    """
    level = (level or settings.LOG_LEVEL).upper()
    log_file = log_file if log_file is not None else settings.LOG_FILE

    logger = logging.getLogger("plantshop")
    logger.handlers.clear()
    logger.setLevel(getattr(logging, level, logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    # Консольный вывод
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Файловый вывод с ротацией
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
