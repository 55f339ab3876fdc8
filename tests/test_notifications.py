import asyncio
import json
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from plantshop.services.notification_service import (
    AdminChannel, NotificationService, NotificationType, load_admin_channel
)


# Настоящая отправка: фикстура sent_messages подменяет её в каждом тесте
REAL_SEND = NotificationService.send_message


def _order(**fields):
    values = {
        "id": 12,
        "full_name": "<b>Анна</b>",
        "phone": "+79991234567",
        "address": "Москва",
        "items": [{"id": 1, "name": "Монстера", "price": 1000, "quantity": 2}],
        "delivery_type": "cdek",
        "delivery_amount": Decimal("350"),
        "promo_code": None,
        "promo_code_discount": Decimal("0"),
        "total_amount": Decimal("2350"),
        "payment_method": "ozonpay",
        "payment_status": "completed",
        "order_status": "shipped",
        "tracking_number": "RU123",
        "payment_proof_url": "/uploads/payment-proofs/a.png",
        "ozonpay_transaction_id": "777",
    }
    values.update(fields)
    return SimpleNamespace(**values)


def test_new_order_message_escapes_customer_data(sent_messages):
    service = NotificationService()

    sent = asyncio.run(service.notify_new_order(AdminChannel(chat_id="999"), _order()))

    assert sent
    text = sent_messages[0]["text"]
    assert "Новый заказ #12" in text
    assert "&lt;b&gt;Анна&lt;/b&gt;" in text
    assert "СДЭК" in text
    assert "Монстера × 2" in text


def test_disabled_admin_channel_sends_nothing(db, sent_messages):
    service = NotificationService()

    assert not load_admin_channel(db).is_ready
    assert not asyncio.run(service.notify_new_order(load_admin_channel(db), _order()))
    assert not asyncio.run(service.notify_payment_received(AdminChannel(chat_id="999", enabled=False), _order()))
    assert sent_messages == []


def test_status_message_for_customer(sent_messages):
    asyncio.run(NotificationService().notify_order_status("555", _order()))

    text = sent_messages[0]["text"]
    assert "Отправлен" in text
    assert "RU123" in text


def test_render_with_missing_data():
    assert NotificationService().render(NotificationType.BALANCE_TOPPED_UP, {"amount": 100}) is None


def test_broadcast_counts_failures(monkeypatch, sent_messages):
    monkeypatch.setattr(NotificationService, "BROADCAST_DELAY_SECONDS", 0)
    product = SimpleNamespace(id=3, name="Фикус", description="Неприхотливый", price=Decimal("900"))

    result = asyncio.run(NotificationService().broadcast_new_product(["1", "", "3"], product))

    assert result == {"success": 2, "failed": 1}
    assert all("Фикус" in m["text"] for m in sent_messages)


def test_new_product_is_broadcast_to_linked_users(client, make_user, auth_headers, sent_messages):
    admin = make_user(is_admin=True)
    make_user(telegram_chat_id="101")
    make_user(telegram_chat_id="102")
    make_user()

    response = client.post(
        "/api/products",
        json={"name": "Калатея", "price": 1500, "quantity": 5},
        headers=auth_headers(admin),
    )

    assert response.status_code == 201
    assert sorted(m["chat_id"] for m in sent_messages) == ["101", "102"]


def test_telegram_settings_test_message(client, make_user, auth_headers, sent_messages):
    admin = make_user(is_admin=True)
    headers = auth_headers(admin)

    saved = client.put("/api/settings/telegram", json={"chat_id": "999", "enable_notifications": True}, headers=headers)
    assert saved.status_code == 200

    result = client.post("/api/settings/telegram/test", headers=headers)

    assert result.json()["success"] is True
    assert sent_messages[-1]["chat_id"] == "999"


# ============================================================
# HTTP-СЛОЙ TELEGRAM
# ============================================================

@pytest.fixture
def telegram(monkeypatch):
    real_client = httpx.AsyncClient
    state = {"handler": None, "requests": []}

    def handler(request):
        state["requests"].append(request)
        return state["handler"](request)

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)
    return state


def _send(service, chat_id="555", text="Привет"):
    return asyncio.run(REAL_SEND(service, chat_id, text))


def test_send_message_posts_to_bot_api(telegram):
    telegram["handler"] = lambda request: httpx.Response(200, json={"ok": True})

    assert _send(NotificationService(bot_token="42:ABC"))

    request = telegram["requests"][0]
    assert request.url.host == "api.telegram.org"
    assert request.url.path.endswith("/sendMessage")
    assert json.loads(request.content) == {"chat_id": "555", "text": "Привет", "parse_mode": "HTML"}


def test_telegram_error_is_not_retried(telegram):
    telegram["handler"] = lambda request: httpx.Response(400, json={"ok": False, "description": "chat not found"})

    assert not _send(NotificationService(max_retries=2))
    assert len(telegram["requests"]) == 1


def test_network_error_is_retried(telegram):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    telegram["handler"] = refuse

    assert not _send(NotificationService(max_retries=1))
    assert len(telegram["requests"]) == 2


def test_no_chat_means_no_request(telegram):
    assert not _send(NotificationService(), chat_id=None)
    assert telegram["requests"] == []
