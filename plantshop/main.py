"""
Модуль: main.py
Описание: Точка входа приложения FastAPI
Проект: Plant Shop Backend

Запуск:
    # Режим разработки (с автоперезагрузкой)
    uvicorn plantshop.main:app --reload --host 0.0.0.0 --port 8000

    # Production
    uvicorn plantshop.main:app --host 0.0.0.0 --port 8000

    # Telegram-бот запускается отдельным процессом
    python -m plantshop.bot

Документация API после запуска:
    - Swagger UI: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from plantshop.config import is_development, is_ozonpay_configured, settings, validate_config
from plantshop.database.connection import check_connection, init_db, session_scope
from plantshop.routers import auth, balance, orders, payments, products, promo_codes, reviews, users
from plantshop.routers import settings as settings_router
from plantshop.services.pending_registrations import PendingRegistrationStore
from plantshop.services.registration import RegistrationService
from plantshop.utils.exceptions import ShopError
from plantshop.utils.logger import setup_logging


logger = logging.getLogger("plantshop.app")


# ============================================================
# СОБЫТИЯ ЖИЗНЕННОГО ЦИКЛА
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Управление жизненным циклом приложения.

    При старте:
    - Проверка конфигурации
    - Создание таблиц
    - Очистка просроченных заявок на регистрацию
    - Создание администратора из ADMIN_EMAIL / ADMIN_PASSWORD
    """
    # ===== STARTUP =====
    setup_logging()
    logger.info("🚀 Запуск Plant Shop Backend...")

    config_check = validate_config()
    if not config_check["valid"]:
        logger.error(f"❌ Ошибка конфигурации! Не заполнены: {', '.join(config_check['missing'])}")
    else:
        logger.info("✅ Конфигурация OK")

    for warning in config_check["warnings"]:
        logger.warning(f"⚠️  {warning}")

    init_db()

    db_check = await check_connection()
    if db_check["connected"]:
        logger.info("✅ База данных OK")
    else:
        logger.error(f"⚠️  База данных: {db_check['error']}")

    with session_scope() as db:
        removed = PendingRegistrationStore(db).cleanup_expired()
        if removed:
            logger.info(f"🧹 Удалено просроченных заявок: {removed}")
        RegistrationService(db).ensure_admin(settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)

    logger.info(f"📍 Режим: {settings.APP_ENV}")
    logger.info(f"📚 Документация: http://{settings.HOST}:{settings.PORT}/docs")

    yield  # Приложение работает

    # ===== SHUTDOWN =====
    logger.info("👋 Остановка приложения...")


# ============================================================
# СОЗДАНИЕ ПРИЛОЖЕНИЯ
# ============================================================

app = FastAPI(
    title="Plant Shop API",
    description="""
    API интернет-магазина комнатных растений.

    ## Основные возможности

    * 🌿 **Каталог** — растения с фильтрами по уходу
    * 📱 **Регистрация** — с подтверждением телефона в Telegram
    * 🛒 **Заказы** — оплата с баланса, переводом или через Ozon Pay
    * 🎟 **Промокоды** — процентные и фиксированные скидки
    * 🔔 **Уведомления** — в Telegram администратору и покупателям

    ## Авторизация

    JWT токен выдаётся после регистрации или входа.
    Передавайте в заголовке: `Authorization: Bearer <token>`
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)


# ============================================================
# MIDDLEWARE
# ============================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if is_development() else [settings.SITE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Добавляет заголовок X-Process-Time в ответ."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2)) + "ms"
    return response


# ============================================================
# ОБРАБОТКА ОШИБОК
# ============================================================

@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    """Ошибки бизнес-логики → JSON с кодом ошибки."""
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": True,
            "message": exc.message,
            "code": exc.code
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Глобальный обработчик исключений.

    В production скрывает детали ошибки.
    """
    logger.exception(f"💥 Необработанная ошибка {request.method} {request.url.path}")

    if is_development():
        return JSONResponse(
            status_code=500,
            content={
                "error": True,
                "message": str(exc),
                "type": type(exc).__name__,
                "path": request.url.path
            }
        )

    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "message": "Внутренняя ошибка сервера"
        }
    )


# ============================================================
# БАЗОВЫЕ ЭНДПОИНТЫ
# ============================================================

@app.get("/health", tags=["Система"])
async def health_check():
    """Проверка здоровья приложения и подключения к БД."""
    db_status = await check_connection()

    return {
        "status": "healthy" if db_status["connected"] else "degraded",
        "checks": {
            "database": {
                "status": "ok" if db_status["connected"] else "error",
                "message": db_status.get("error")
            }
        },
        "environment": settings.APP_ENV
    }


@app.get("/config", tags=["Система"])
async def get_config():
    """
    Публичная конфигурация для фронтенда.

    Секретные ключи сюда не попадают.
    """
    return {
        "environment": settings.APP_ENV,
        "site_url": settings.SITE_URL,
        "telegram_bot_username": settings.TELEGRAM_BOT_USERNAME,
        "features": {
            "ozonpay_enabled": is_ozonpay_configured(),
            "telegram_enabled": bool(settings.TELEGRAM_BOT_TOKEN),
        }
    }


# ============================================================
# ПОДКЛЮЧЕНИЕ РОУТЕРОВ
# ============================================================

app.include_router(auth.router)
app.include_router(products.router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(promo_codes.router)
app.include_router(balance.router)
app.include_router(users.router)
app.include_router(reviews.router)
app.include_router(settings_router.router)

Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")


# ============================================================
# ЗАПУСК
# ============================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "plantshop.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=is_development(),
        log_level="debug" if settings.DEBUG else "info"
    )
