"""
Модуль: config.py
Описание: Конфигурация приложения и переменные окружения
Проект: Plant Shop Backend

Этот файл загружает все настройки из .env файла и предоставляет
их остальным модулям приложения через класс Settings.

Использование:
    from plantshop.config import settings
    print(settings.OZONPAY_API_URL)
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Класс настроек приложения.

    Все значения загружаются из переменных окружения или .env файла.
    Pydantic автоматически валидирует типы данных.

    Пример:
        settings = Settings()
        secret = settings.JWT_SECRET
    """

    # ==================== БАЗА ДАННЫХ ====================
    # Один файл SQLite на всё приложение
    DATABASE_URL: str = "sqlite:///./db/database.sqlite"

    # ==================== TELEGRAM ====================
    # Токен бота, полученный от @BotFather.
    # Пустой токен = уведомления и бот отключены
    TELEGRAM_BOT_TOKEN: str = ""

    # Username бота без @, нужен для deep link верификации
    TELEGRAM_BOT_USERNAME: str = "plantshop_bot"

    # Публичный адрес сайта (ссылки в уведомлениях)
    SITE_URL: str = "http://localhost:8000"

    # ==================== ПЛАТЕЖИ (OZONPAY) ====================
    # Ключи из личного кабинета Ozon Pay
    OZONPAY_ACCESS_KEY: str = ""
    OZONPAY_SECRET_KEY: str = ""

    # Отдельный секрет для проверки подписи webhook'ов
    OZONPAY_NOTIFICATION_SECRET_KEY: str = ""

    OZONPAY_API_URL: str = "https://payapi.ozon.ru/v1"

    # Куда вернуть пользователя после оплаты и куда слать уведомления
    OZONPAY_SUCCESS_URL: str = "http://localhost:8000/payment/success"
    OZONPAY_FAIL_URL: str = "http://localhost:8000/payment/fail"
    OZONPAY_WEBHOOK_URL: str = "http://localhost:8000/api/payments/ozonpay/webhook"

    # ==================== ВНЕШНИЕ HTTP-ВЫЗОВЫ ====================
    # Таймаут запросов к Ozon Pay и Telegram Bot API (секунды)
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Сколько раз повторить запрос при сетевой ошибке
    HTTP_MAX_RETRIES: int = 2

    # ==================== БЕЗОПАСНОСТЬ (JWT) ====================
    # Секретный ключ для подписи JWT токенов
    # Сгенерировать: python -c "import secrets; print(secrets.token_hex(32))"
    JWT_SECRET: str

    # Алгоритм подписи (не менять без необходимости)
    JWT_ALGORITHM: str = "HS256"

    # Время жизни токена в часах
    JWT_EXPIRE_HOURS: int = 24 * 7  # 7 дней

    # Администратор, создаваемый при первом запуске (опционально)
    ADMIN_EMAIL: str = ""
    ADMIN_PASSWORD: str = ""

    # ==================== РЕГИСТРАЦИЯ ====================
    # Через сколько часов неподтверждённая регистрация удаляется
    PENDING_REGISTRATION_TTL_HOURS: int = 24

    # ==================== ФАЙЛЫ ====================
    # Папка для скриншотов оплаты
    UPLOAD_DIR: str = "./uploads"

    # ==================== ПРИЛОЖЕНИЕ ====================
    # Окружение: development, staging, production
    APP_ENV: str = "development"

    # Режим отладки (логи, трейсбеки)
    DEBUG: bool = True

    # Хост и порт для запуска сервера
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ==================== ЛОГИРОВАНИЕ ====================
    LOG_LEVEL: str = "INFO"

    # Пустая строка = логи только в консоль
    LOG_FILE: str = ""

    class Config:
        """
        Конфигурация Pydantic для загрузки из .env файла.
        """
        # Путь к .env файлу (относительно корня проекта)
        env_file = ".env"

        # Кодировка файла
        env_file_encoding = "utf-8"

        # Чувствительность к регистру переменных
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Получить объект настроек (с кэшированием).

    Используем lru_cache чтобы не перечитывать .env при каждом обращении.

    Возвращает:
        Settings: Объект с настройками приложения
    """
    return Settings()


# Создаём глобальный объект настроек для удобного импорта
# Использование: from plantshop.config import settings
settings = get_settings()


# ==================== ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ ====================

def is_production() -> bool:
    """
    Проверить, запущено ли приложение в production.

    Возвращает:
        bool: True если production, иначе False
    """
    return settings.APP_ENV == "production"


def is_development() -> bool:
    """
    Проверить, запущено ли приложение в режиме разработки.

    Возвращает:
        bool: True если development, иначе False
    """
    return settings.APP_ENV == "development"


def is_ozonpay_configured() -> bool:
    """Заполнены ли ключи Ozon Pay."""
    return bool(settings.OZONPAY_ACCESS_KEY and settings.OZONPAY_SECRET_KEY)


# ==================== ПРОВЕРКА КОНФИГУРАЦИИ ====================

def validate_config() -> dict:
    """
    Проверить, что все обязательные настройки заполнены.

    Возвращает:
        dict: Статус проверки
            {
                "valid": True/False,
                "missing": ["список", "пропущенных", "настроек"],
                "warnings": ["предупреждения"]
            }

    Пример:
        result = validate_config()
        if not result["valid"]:
            print(f"Ошибка: не заполнены {result['missing']}")
    """
    missing = []
    warnings = []

    # Обязательные настройки
    required = [
        ("DATABASE_URL", settings.DATABASE_URL),
        ("JWT_SECRET", settings.JWT_SECRET),
    ]

    for name, value in required:
        if not value:
            missing.append(name)

    # Предупреждения для опциональных, но важных настроек
    if not is_ozonpay_configured():
        warnings.append("OZONPAY_ACCESS_KEY/OZONPAY_SECRET_KEY не заполнены — онлайн-оплата не будет работать")

    if is_ozonpay_configured() and not settings.OZONPAY_NOTIFICATION_SECRET_KEY:
        warnings.append("OZONPAY_NOTIFICATION_SECRET_KEY не заполнен — webhook'и будут отклоняться")

    if not settings.TELEGRAM_BOT_TOKEN:
        warnings.append("TELEGRAM_BOT_TOKEN не заполнен — верификация телефона и уведомления не будут работать")

    if settings.APP_ENV == "production" and settings.DEBUG:
        warnings.append("DEBUG=True в production — рекомендуется отключить")

    return {
        "valid": len(missing) == 0,
        "missing": missing,
        "warnings": warnings
    }
