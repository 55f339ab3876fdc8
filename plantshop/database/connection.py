"""
Модуль: database/connection.py
Описание: Подключение к базе данных SQLite через SQLAlchemy
Проект: Plant Shop Backend

Вся база — один файл SQLite. Таблицы описаны в database/tables.py.

Использование в роутерах (сессия на запрос):
    from plantshop.database.connection import get_db

    @router.get("/")
    async def handler(db: Session = Depends(get_db)):
        ...

Использование вне запроса (бот, cron):
    from plantshop.database.connection import session_scope

    with session_scope() as db:
        ...
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from plantshop.config import settings


logger = logging.getLogger("plantshop.database")


# ==================== ДВИЖОК ====================

def _create_engine(database_url: str):
    """
    Создать движок SQLAlchemy.

    Для SQLite создаём папку под файл базы и разрешаем
    использование соединения из разных потоков (FastAPI
    выполняет обработчики в пуле потоков).
    """
    url = make_url(database_url)
    connect_args = {}

    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(database_url, connect_args=connect_args)


engine = _create_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Iterator[Session]:
    """
    Зависимость FastAPI: сессия БД на время запроса.

    Пример:
        @router.get("/orders")
        async def list_orders(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Сессия с автоматическим commit/rollback.

    Для кода вне HTTP-запроса: бот, cron-скрипты, старт приложения.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Создать недостающие таблицы."""
    # Импорт регистрирует модели в Base.metadata
    from plantshop.database import tables  # noqa: F401

    Base.metadata.create_all(bind=engine)


async def check_connection() -> dict:
    """
    Проверить подключение к БД.

    Возвращает:
        dict: Результат проверки
            {
                "connected": True/False,
                "message": "описание",
                "error": "ошибка если есть"
            }
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))

        return {
            "connected": True,
            "message": "Успешное подключение к базе данных",
            "error": None
        }

    except SQLAlchemyError as e:
        logger.error(f"❌ Нет подключения к БД: {e}")
        return {
            "connected": False,
            "message": "Не удалось подключиться к базе данных",
            "error": str(e)
        }


# ==================== ТЕСТИРОВАНИЕ ====================

if __name__ == "__main__":
    """
    Тест подключения при запуске файла напрямую.

    Запуск:
        python -m plantshop.database.connection
    """
    import asyncio

    async def test():
        print("🔄 Проверка подключения к базе данных...")
        result = await check_connection()

        if result["connected"]:
            print("✅ " + result["message"])
        else:
            print("❌ " + result["message"])
            print("   Ошибка:", result["error"])

    asyncio.run(test())
