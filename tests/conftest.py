"""
Общие фикстуры тестов.

Переменные окружения выставляются до первого импорта plantshop:
настройки и движок БД создаются при импорте модулей.
"""

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="plantshop-tests-")

os.environ["APP_ENV"] = "test"
os.environ["DEBUG"] = "false"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/test.sqlite"
os.environ["UPLOAD_DIR"] = f"{_TMP_DIR}/uploads"
os.environ["TELEGRAM_BOT_TOKEN"] = "123456:TEST"
os.environ["TELEGRAM_BOT_USERNAME"] = "plantshop_test_bot"
os.environ["OZONPAY_ACCESS_KEY"] = "test-access"
os.environ["OZONPAY_SECRET_KEY"] = "test-secret"
os.environ["OZONPAY_NOTIFICATION_SECRET_KEY"] = "test-notify"
os.environ["ADMIN_EMAIL"] = ""
os.environ["ADMIN_PASSWORD"] = ""

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from plantshop.database import tables  # noqa: E402
from plantshop.database.connection import Base, SessionLocal, engine  # noqa: E402
from plantshop.services.notification_service import NotificationService  # noqa: E402
from plantshop.services.payment_service import OzonPayClient  # noqa: E402
from plantshop.utils.auth import create_access_token, hash_password  # noqa: E402
from plantshop.utils.exceptions import PaymentServiceUnavailable  # noqa: E402


# ============================================================
# БАЗА ДАННЫХ
# ============================================================

@pytest.fixture(autouse=True)
def fresh_database():
    """Пустые таблицы для каждого теста."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


# ============================================================
# ВНЕШНИЕ СЕРВИСЫ
# ============================================================

@pytest.fixture(autouse=True)
def sent_messages(monkeypatch):
    """Сообщения, которые ушли бы в Telegram."""
    messages = []

    async def fake_send_message(self, chat_id, text, bot_token=None, reply_markup=None, parse_mode="HTML"):
        if not chat_id:
            return False
        messages.append({"chat_id": str(chat_id), "text": text})
        return True

    monkeypatch.setattr(NotificationService, "send_message", fake_send_message)
    return messages


class FakeGateway:
    """
    Подмена HTTP-слоя Ozon Pay.

    mode:
        "ok"          — createOrder возвращает новый заказ
        "paid"        — createOrder возвращает STATUS_PAID
        "unavailable" — любой вызов: сеть недоступна
    """

    def __init__(self):
        self.mode = "ok"
        self.calls = []
        self.counter = 0

    def handle(self, method: str, body: dict) -> dict:
        self.calls.append((method, body))

        if self.mode == "unavailable":
            raise PaymentServiceUnavailable("Платёжная система временно недоступна")

        if method == "createOrder":
            self.counter += 1
            return {
                "order": {
                    "id": f"ozon-{self.counter}",
                    "payLink": f"https://pay.example/{self.counter}",
                    "status": "STATUS_PAID" if self.mode == "paid" else "STATUS_CREATED",
                    "extId": body["extId"],
                    "items": body["items"],
                }
            }

        return {"status": "STATUS_CREATED"}

    def created_orders(self):
        return [body for method, body in self.calls if method == "createOrder"]


@pytest.fixture(autouse=True)
def gateway(monkeypatch):
    fake = FakeGateway()

    async def fake_post(self, method, body, retry_on_timeout=True):
        return fake.handle(method, body)

    monkeypatch.setattr(OzonPayClient, "_post", fake_post)
    return fake


@pytest.fixture
def sign_webhook():
    """Подписать webhook ключами из тестового окружения."""
    client = OzonPayClient()

    def _sign(payload: dict) -> dict:
        payload = dict(payload)
        payload["requestSign"] = client.webhook_signature(payload)
        return payload

    return _sign


# ============================================================
# HTTP-КЛИЕНТ И ДАННЫЕ
# ============================================================

@pytest.fixture
def client():
    from plantshop.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(**fields) -> tables.User:
        counter["n"] += 1
        n = counter["n"]
        values = {
            "email": f"user{n}@example.com",
            "password_hash": hash_password("password123"),
            "username": f"user{n}",
            "full_name": f"Покупатель {n}",
            "phone": f"+7999000000{n}",
            "address": "Москва, ул. Ботаническая, 1",
            "is_admin": False,
            "balance": Decimal("0"),
        }
        values.update(fields)
        user = tables.User(**values)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_product(db):
    def _make(**fields) -> tables.Product:
        values = {"name": "Монстера", "price": Decimal("1000"), "quantity": 10}
        values.update(fields)
        product = tables.Product(**values)
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user: tables.User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers


@pytest.fixture
def admin_channel(db):
    """Включённые уведомления администратору."""
    db.add(tables.TelegramSettings(bot_token="", chat_id="999", enable_notifications=True))
    db.commit()
    return "999"
