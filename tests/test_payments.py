"""Онлайн-оплата через Ozon Pay: создание платежа, webhook, пополнение баланса."""

import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from plantshop.database.tables import BalanceTopup, Order, Product, PromoCode, User
from plantshop.services.payment_service import OzonPayClient, OzonPayItem, to_kopecks
from plantshop.utils.exceptions import PaymentGatewayError, PaymentServiceUnavailable


# Настоящий HTTP-метод: фикстура gateway подменяет его в каждом тесте
REAL_POST = OzonPayClient._post

WEBHOOK_URL = "/api/payments/ozonpay/webhook"


def _ozonpay_order(client, user, product_id, auth_headers, **overrides):
    body = {
        "items": [{"product_id": product_id, "quantity": 2}],
        "delivery_amount": 350,
        "delivery_type": "cdek",
        "payment_method": "ozonpay",
    }
    body.update(overrides)
    return client.post("/api/orders", json=body, headers=auth_headers(user))


def _webhook(gateway, payment_id, status="Completed", transaction_id=777, amount=2350):
    # ozon-N создан N-м вызовом createOrder
    index = int(payment_id.split("-")[1])
    ext_id = gateway.created_orders()[index - 1]["extId"]
    return {
        "orderID": payment_id,
        "transactionID": transaction_id,
        "extOrderID": ext_id,
        "amount": amount,
        "currencyCode": "643",
        "status": status,
    }


def _reload(db, model, pk):
    db.expire_all()
    return db.get(model, pk)


# ============================================================
# СОЗДАНИЕ ПЛАТЕЖА
# ============================================================

def test_ozonpay_order_returns_payment_link(client, db, make_user, make_product, auth_headers, gateway):
    user = make_user()
    product = make_product()

    response = _ozonpay_order(client, user, product.id, auth_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["payment_url"] == "https://pay.example/1"
    assert body["payment_id"] == "ozon-1"
    assert body["payment_error"] is None
    assert body["order"]["state"] == "awaiting_payment"
    assert _reload(db, Product, product.id).quantity == 10

    sent = gateway.created_orders()[0]
    assert sent["extId"].startswith(f"order_{body['order']['id']}_")
    assert sent["amount"]["value"] == 235000
    assert [item["extId"] for item in sent["items"]][-1] == "delivery-service"


def test_paid_status_at_creation_keeps_order_unpaid(client, db, make_user, make_product, auth_headers, gateway):
    user = make_user()
    product = make_product()
    gateway.mode = "paid"

    response = _ozonpay_order(client, user, product.id, auth_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["payment_url"] is None
    assert body["payment_error_code"] == "PAYMENT_SYSTEM_ERROR"
    assert body["order"]["state"] == "awaiting_payment"
    assert _reload(db, Order, body["order"]["id"]).ozonpay_payment_id is None
    assert _reload(db, Product, product.id).quantity == 10


def test_gateway_unavailable_then_retry(client, make_user, make_product, auth_headers, gateway):
    user = make_user()
    product = make_product()
    gateway.mode = "unavailable"

    created = _ozonpay_order(client, user, product.id, auth_headers)
    assert created.status_code == 201
    assert created.json()["payment_error_code"] == "PAYMENT_SERVICE_UNAVAILABLE"
    order_id = created.json()["order"]["id"]

    still_down = client.post(f"/api/orders/{order_id}/retry-payment", headers=auth_headers(user))
    assert still_down.status_code == 503
    assert still_down.json()["code"] == "PAYMENT_SERVICE_UNAVAILABLE"

    gateway.mode = "ok"
    retried = client.post(f"/api/orders/{order_id}/retry-payment", headers=auth_headers(user))
    assert retried.status_code == 200
    assert retried.json()["payment_url"] == "https://pay.example/1"
    assert gateway.created_orders()[-1]["extId"].startswith(f"{order_id}_retry_")


def test_zero_total_cannot_be_paid_online(client, db, make_user, make_product, auth_headers, gateway):
    db.add(PromoCode(code="FREE", discount_type="fixed", discount_value=Decimal("100000")))
    db.commit()
    user = make_user()
    product = make_product()

    response = _ozonpay_order(
        client, user, product.id, auth_headers,
        delivery_amount=0, delivery_type="pickup", promo_code="FREE",
    )

    assert response.status_code == 400
    assert gateway.created_orders() == []


def test_retry_is_only_for_online_payment(client, make_user, make_product, auth_headers):
    user = make_user(balance=Decimal("5000"))
    product = make_product()
    order_id = _ozonpay_order(client, user, product.id, auth_headers, payment_method="balance").json()["order"]["id"]

    response = client.post(f"/api/orders/{order_id}/retry-payment", headers=auth_headers(user))

    assert response.status_code == 400


# ============================================================
# WEBHOOK
# ============================================================

def test_completed_webhook_pays_once_and_resends_receipt(
    client, db, make_user, make_product, auth_headers, gateway, sign_webhook, admin_channel, sent_messages
):
    user = make_user(telegram_chat_id="555")
    product = make_product()
    order_id = _ozonpay_order(client, user, product.id, auth_headers).json()["order"]["id"]
    payload = sign_webhook(_webhook(gateway, "ozon-1"))

    first = client.post(WEBHOOK_URL, json=payload)
    assert first.status_code == 200
    assert first.json() == {"status": "ok", "order_id": order_id, "state": "paid"}
    assert _reload(db, Product, product.id).quantity == 8
    assert _reload(db, Order, order_id).ozonpay_transaction_id == "777"

    replay = client.post(WEBHOOK_URL, json=payload)
    assert replay.status_code == 200
    assert replay.json()["state"] == "paid"
    assert _reload(db, Product, product.id).quantity == 8

    admin_paid = [m for m in sent_messages if m["chat_id"] == admin_channel and "Оплата получена" in m["text"]]
    receipts = [m for m in sent_messages if m["chat_id"] == "555" and "Чек по заказу" in m["text"]]
    assert len(admin_paid) == 1
    assert len(receipts) == 2


@pytest.mark.parametrize("field, value", [
    ("orderID", "ozon-2"),
    ("transactionID", 778),
    ("extOrderID", "order_1_0"),
    ("amount", 1),
    ("currencyCode", "840"),
])
def test_changed_field_breaks_signature(client, db, make_user, make_product, auth_headers, gateway, sign_webhook, field, value):
    user = make_user()
    product = make_product()
    order_id = _ozonpay_order(client, user, product.id, auth_headers).json()["order"]["id"]
    payload = sign_webhook(_webhook(gateway, "ozon-1"))
    payload[field] = value

    response = client.post(WEBHOOK_URL, json=payload)

    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_SIGNATURE"
    assert _reload(db, Order, order_id).payment_status == "pending"


def test_webhook_without_signature_is_rejected(client, make_user, make_product, auth_headers, gateway):
    user = make_user()
    product = make_product()
    _ozonpay_order(client, user, product.id, auth_headers)

    response = client.post(WEBHOOK_URL, json=_webhook(gateway, "ozon-1"))

    assert response.status_code == 401


def test_webhook_body_must_be_object(client):
    assert client.post(WEBHOOK_URL, json=[1, 2, 3]).status_code == 400
    assert client.post(WEBHOOK_URL, content=b"not json", headers={"Content-Type": "application/json"}).status_code == 400


def test_webhook_for_unknown_payment_is_ignored(client, sign_webhook):
    payload = sign_webhook({
        "orderID": "ozon-404",
        "transactionID": 1,
        "extOrderID": "order_404_0",
        "amount": 100,
        "currencyCode": "643",
        "status": "Completed",
    })

    response = client.post(WEBHOOK_URL, json=payload)

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


def test_failed_then_retry_then_paid(client, db, make_user, make_product, auth_headers, gateway, sign_webhook):
    user = make_user()
    product = make_product()
    order_id = _ozonpay_order(client, user, product.id, auth_headers).json()["order"]["id"]

    failed = client.post(WEBHOOK_URL, json=sign_webhook(_webhook(gateway, "ozon-1", status="Failed")))
    assert failed.json()["state"] == "payment_failed"

    retried = client.post(f"/api/orders/{order_id}/retry-payment", headers=auth_headers(user))
    assert retried.json()["payment_id"] == "ozon-2"
    assert _reload(db, Order, order_id).payment_status == "pending"

    paid = client.post(WEBHOOK_URL, json=sign_webhook(_webhook(gateway, "ozon-2")))
    assert paid.json()["state"] == "paid"
    assert _reload(db, Product, product.id).quantity == 8


def test_failed_after_paid_is_ignored(client, make_user, make_product, auth_headers, gateway, sign_webhook):
    user = make_user()
    product = make_product()
    _ozonpay_order(client, user, product.id, auth_headers)

    client.post(WEBHOOK_URL, json=sign_webhook(_webhook(gateway, "ozon-1")))
    late = client.post(WEBHOOK_URL, json=sign_webhook(_webhook(gateway, "ozon-1", status="Failed")))

    assert late.status_code == 200
    assert late.json()["state"] == "paid"


def test_completed_after_failed_on_same_payment(client, db, make_user, make_product, auth_headers, gateway, sign_webhook):
    user = make_user()
    product = make_product()
    order_id = _ozonpay_order(client, user, product.id, auth_headers).json()["order"]["id"]

    failed = client.post(WEBHOOK_URL, json=sign_webhook(_webhook(gateway, "ozon-1", status="Failed")))
    assert failed.json()["state"] == "payment_failed"

    paid = client.post(WEBHOOK_URL, json=sign_webhook(_webhook(gateway, "ozon-1")))

    assert paid.status_code == 200
    assert paid.json()["state"] == "paid"
    order = _reload(db, Order, order_id)
    assert (order.payment_status, order.order_status) == ("completed", "processing")
    assert _reload(db, Product, product.id).quantity == 8


def test_float_amount_signs_like_integer():
    payments = OzonPayClient()
    payload = {"orderID": "ozon-1", "transactionID": 5, "extOrderID": "order_1_0", "amount": 2350, "currencyCode": "643"}
    payload["requestSign"] = payments.webhook_signature(payload)

    payload["amount"] = 2350.0

    assert payments.verify_webhook_signature(payload)


# ============================================================
# ПОПОЛНЕНИЕ БАЛАНСА
# ============================================================

def test_topup_is_credited_once(client, db, make_user, auth_headers, gateway, sign_webhook, sent_messages):
    user = make_user(telegram_chat_id="555")

    created = client.post("/api/balance/topup", json={"amount": 1000}, headers=auth_headers(user))
    assert created.status_code == 200
    assert created.json()["payment_url"] == "https://pay.example/1"
    ext_id = gateway.created_orders()[0]["extId"]
    assert ext_id.startswith(f"balance_{created.json()['topup_id']}_")

    payload = sign_webhook(_webhook(gateway, "ozon-1", amount=1000))
    first = client.post(WEBHOOK_URL, json=payload)
    replay = client.post(WEBHOOK_URL, json=payload)

    assert first.json()["credited"] is True
    assert replay.json()["credited"] is False
    assert _reload(db, User, user.id).balance == Decimal("1000")
    assert len([m for m in sent_messages if "Баланс пополнен" in m["text"]]) == 1

    history = client.get("/api/balance/history", headers=auth_headers(user)).json()
    assert [row["status"] for row in history] == ["completed"]


def test_topup_completed_after_failed_is_credited(client, db, make_user, auth_headers, gateway, sign_webhook):
    user = make_user()
    client.post("/api/balance/topup", json={"amount": 1000}, headers=auth_headers(user))

    failed = client.post(WEBHOOK_URL, json=sign_webhook(_webhook(gateway, "ozon-1", status="Failed", amount=1000)))
    assert failed.json()["credited"] is False

    paid = sign_webhook(_webhook(gateway, "ozon-1", amount=1000))
    first = client.post(WEBHOOK_URL, json=paid)
    replay = client.post(WEBHOOK_URL, json=paid)

    assert first.json()["credited"] is True
    assert replay.json()["credited"] is False
    assert _reload(db, User, user.id).balance == Decimal("1000")


def test_topup_when_gateway_is_down(client, db, make_user, auth_headers, gateway):
    user = make_user()
    gateway.mode = "unavailable"

    response = client.post("/api/balance/topup", json={"amount": 500}, headers=auth_headers(user))

    assert response.status_code == 503
    db.expire_all()
    assert db.query(BalanceTopup).one().status == "failed"


def test_admin_adds_balance(client, db, make_user, auth_headers):
    user = make_user()
    admin = make_user(is_admin=True)

    response = client.post(f"/api/balance/admin/{user.id}/add", json={"amount": 250}, headers=auth_headers(admin))
    denied = client.post(f"/api/balance/admin/{user.id}/add", json={"amount": 250}, headers=auth_headers(user))

    assert response.status_code == 200
    assert Decimal(response.json()["balance"]) == Decimal("250")
    assert denied.status_code == 403


# ============================================================
# HTTP-СЛОЙ OZON PAY
# ============================================================

@pytest.fixture
def transport(monkeypatch):
    """Ответы API Ozon Pay без сети: handler(request) -> httpx.Response."""
    real_client = httpx.AsyncClient
    state = {"handler": None, "requests": []}

    def handler(request):
        state["requests"].append(request)
        return state["handler"](request)

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)
    monkeypatch.setattr(OzonPayClient, "_post", REAL_POST)
    return state


def _payments():
    return OzonPayClient(max_retries=1)


def test_not_found_maps_to_unavailable(transport):
    transport["handler"] = lambda request: httpx.Response(404, json={"message": "Not Found"})

    with pytest.raises(PaymentServiceUnavailable):
        asyncio.run(_payments()._post("createOrder", {}))


def test_api_error_maps_to_gateway_error(transport):
    transport["handler"] = lambda request: httpx.Response(400, json={"message": "invalid requestSign"})

    with pytest.raises(PaymentGatewayError) as error:
        asyncio.run(_payments()._post("createOrder", {}))

    assert not isinstance(error.value, PaymentServiceUnavailable)
    assert "invalid requestSign" in error.value.message


def test_connect_error_is_retried_then_unavailable(transport):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    transport["handler"] = refuse

    with pytest.raises(PaymentServiceUnavailable):
        asyncio.run(_payments()._post("getOrderStatus", {}))

    assert len(transport["requests"]) == 2


def test_read_timeout_on_create_is_not_retried(transport):
    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    transport["handler"] = slow

    with pytest.raises(PaymentServiceUnavailable):
        asyncio.run(_payments()._post("createOrder", {}, retry_on_timeout=False))

    assert len(transport["requests"]) == 1


def test_create_payment_request_body(transport):
    transport["handler"] = lambda request: httpx.Response(200, json={
        "order": {"id": "ozon-9", "payLink": "https://pay.example/9", "status": "STATUS_CREATED"}
    })
    payments = _payments()
    items = [OzonPayItem(ext_id="item_1", name="Фикус", price=Decimal("999.99"), quantity=2)]

    result = asyncio.run(payments.create_payment(Decimal("1999.98"), "order_9_1", items))

    assert result.payment_id == "ozon-9"
    assert result.payment_url == "https://pay.example/9"

    sent = json.loads(transport["requests"][0].content)
    assert str(transport["requests"][0].url).endswith("/createOrder")
    assert sent["amount"] == {"currencyCode": "643", "value": 199998}
    assert sent["items"][0]["price"]["value"] == 99999
    assert sent["requestSign"] == payments.sign_create_order(
        "", "order_9_1", "FISCAL_TYPE_SINGLE", "PAY_ALGO_SMS", "643", 199998
    )


def test_unconfigured_client_is_unavailable():
    payments = OzonPayClient(access_key="", secret_key="")

    with pytest.raises(PaymentServiceUnavailable):
        asyncio.run(payments.create_payment(Decimal("100"), "order_1_1", []))


def test_kopecks_rounding():
    assert to_kopecks(Decimal("10.005")) == 1001
    assert to_kopecks(2350) == 235000
