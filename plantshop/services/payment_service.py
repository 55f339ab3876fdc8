"""
Модуль: services/payment_service.py
Описание: Интеграция с платёжной системой Ozon Pay
Проект: Plant Shop Backend

Ozon Pay — эквайринг, через который покупатель оплачивает заказ
картой или СБП на странице платёжной системы.

Как устроена оплата:
    1. create_payment() создаёт заказ в Ozon Pay и возвращает ссылку
    2. Покупатель платит на стороне Ozon Pay
    3. Ozon Pay присылает webhook со статусом (Completed / Failed / ...)
    4. verify_webhook_signature() проверяет подпись webhook'а

Подписи (SHA-256, hex):
    createOrder:      accessKey + expiresAt + extId + fiscalizationType
                      + paymentAlgorithm + currencyCode + amount + secretKey
    getOrder*:        accessKey + orderId + secretKey
    webhook:          accessKey|orderID|transactionID|extOrderID|amount
                      |currencyCode|notificationSecretKey

Суммы в API Ozon Pay — в копейках.

Использование:
    from plantshop.services.payment_service import get_payment_service

    service = get_payment_service()
    result = await service.create_payment(
        amount=Decimal("2850"),
        ext_id="order_42_1700000000000",
        items=[OzonPayItem(ext_id="7", name="Монстера", price=Decimal("2500"), quantity=1)],
    )
    print(result.payment_url)
"""

import asyncio
import hashlib
import hmac
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from plantshop.config import settings
from plantshop.utils.exceptions import PaymentGatewayError, PaymentServiceUnavailable


logger = logging.getLogger("plantshop.payments")


CURRENCY_RUB = "643"
FISCALIZATION_TYPE = "FISCAL_TYPE_SINGLE"
PAYMENT_ALGORITHM = "PAY_ALGO_SMS"


# ============================================================
# МОДЕЛИ
# ============================================================

class WebhookStatus:
    """Статусы в webhook'е Ozon Pay. Остальные считаем ожиданием."""
    COMPLETED = "Completed"
    FAILED = "Failed"


class OzonPayItem(BaseModel):
    """
    Позиция чека в заказе Ozon Pay.

    price — цена за единицу в рублях (в копейки переводится при отправке).
    """
    ext_id: str
    name: str
    price: Decimal
    quantity: int = 1
    type: str = "TYPE_PRODUCT"

    def to_api(self) -> dict:
        return {
            "extId": self.ext_id,
            "name": self.name,
            "price": {"currencyCode": CURRENCY_RUB, "value": to_kopecks(self.price)},
            "quantity": self.quantity,
            "type": self.type,
            "unitType": "UNIT_PIECE",
            "vat": "VAT_NONE",
            "needMark": False,
        }


class PaymentCreateResult(BaseModel):
    """Результат создания платежа."""
    payment_id: str
    payment_url: Optional[str] = None
    status: Optional[str] = None
    ext_id: str


class OzonPayWebhook(BaseModel):
    """
    Уведомление Ozon Pay о статусе оплаты.

    Имена полей как в API. Лишние поля сохраняются.
    """
    model_config = ConfigDict(extra="allow")

    orderID: str = ""
    transactionID: Any = ""
    extOrderID: str = ""
    amount: Any = ""
    currencyCode: Any = ""
    status: str = ""
    requestSign: str = ""


def to_kopecks(amount) -> int:
    """Рубли → копейки с округлением."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _sign_part(value: Any) -> str:
    """
    Строковое представление поля для подписи.

    Целые числа, пришедшие как float (50000.0), пишутся без ".0",
    как их пишет Ozon Pay.
    """
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


# ============================================================
# КЛИЕНТ OZON PAY
# ============================================================

class OzonPayClient:
    """
    Клиент API Ozon Pay.

    Ошибки:
        PaymentServiceUnavailable — API недоступен, ключи не найдены
            или не настроены (клиенту предлагаем другой способ оплаты)
        PaymentGatewayError — API ответил ошибкой или вернул заказ
            уже оплаченным при создании
    """

    STATUS_PAID = "STATUS_PAID"

    def __init__(
        self,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        notification_secret_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        self.access_key = access_key if access_key is not None else settings.OZONPAY_ACCESS_KEY
        self.secret_key = secret_key if secret_key is not None else settings.OZONPAY_SECRET_KEY
        self.notification_secret_key = (
            notification_secret_key if notification_secret_key is not None
            else settings.OZONPAY_NOTIFICATION_SECRET_KEY
        )
        self.api_url = (api_url or settings.OZONPAY_API_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.max_retries = settings.HTTP_MAX_RETRIES if max_retries is None else max_retries

        if not self.access_key or not self.secret_key:
            logger.warning("⚠️  OzonPayClient: ключи Ozon Pay не настроены")

    @property
    def is_configured(self) -> bool:
        return bool(self.access_key and self.secret_key)

    # ============================================================
    # ПОДПИСИ
    # ============================================================

    def sign_create_order(
        self,
        expires_at: str,
        ext_id: str,
        fiscalization_type: str,
        payment_algorithm: str,
        currency_code: str,
        value: int,
    ) -> str:
        return _sha256(
            f"{self.access_key}{expires_at}{ext_id}{fiscalization_type}"
            f"{payment_algorithm}{currency_code}{value}{self.secret_key}"
        )

    def sign_order_request(self, order_id: str) -> str:
        """Подпись для getOrderDetails / getOrderStatus."""
        return _sha256(f"{self.access_key}{order_id}{self.secret_key}")

    def webhook_signature(self, payload: Dict[str, Any]) -> str:
        """Ожидаемая подпись webhook'а."""
        parts = [
            self.access_key,
            _sign_part(payload.get("orderID")),
            _sign_part(payload.get("transactionID")),
            _sign_part(payload.get("extOrderID")),
            _sign_part(payload.get("amount")),
            _sign_part(payload.get("currencyCode")),
            self.notification_secret_key,
        ]
        return _sha256("|".join(parts))

    def verify_webhook_signature(self, payload: Dict[str, Any]) -> bool:
        """
        Проверить подпись webhook'а (поле requestSign).

        Без настроенного секрета уведомлений любой webhook отклоняется.
        """
        received = str(payload.get("requestSign") or "")
        if not received or not self.notification_secret_key:
            return False
        return hmac.compare_digest(self.webhook_signature(payload), received.lower())

    # ============================================================
    # HTTP
    # ============================================================

    async def _post(self, method: str, body: dict, retry_on_timeout: bool = True) -> dict:
        """
        POST в API Ozon Pay с повтором при сетевых ошибках.

        retry_on_timeout=False для createOrder: после таймаута чтения
        заказ мог уже создаться, повторяем только если соединение
        не было установлено.
        """
        url = f"{self.api_url}/{method}"
        retryable = (httpx.TransportError,) if retry_on_timeout else (httpx.ConnectError, httpx.ConnectTimeout)

        attempt = 0
        while True:
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=body)
                break
            except retryable as e:
                if attempt >= self.max_retries:
                    logger.error(f"❌ Ozon Pay {method}: сеть недоступна ({e})")
                    raise PaymentServiceUnavailable(
                        "⚠️ Платёжная система временно недоступна. Попробуйте позже или выберите другой способ оплаты."
                    ) from e
                attempt += 1
                logger.warning(f"⚠️  Ozon Pay {method}: {e}, повтор {attempt}/{self.max_retries}")
                await asyncio.sleep(0.5 * attempt)
            except httpx.HTTPError as e:
                logger.error(f"❌ Ozon Pay {method}: {e}")
                raise PaymentServiceUnavailable(
                    "⚠️ Платёжная система временно недоступна. Попробуйте позже или выберите другой способ оплаты."
                ) from e

        try:
            data = response.json()
        except ValueError:
            data = {"message": response.text}

        if not response.is_success:
            message = str(data.get("message") or response.reason_phrase)
            logger.error(f"❌ Ozon Pay {method}: HTTP {response.status_code} {message}")

            if response.status_code == 404 or "не найдено" in message.lower():
                raise PaymentServiceUnavailable(
                    "⚠️ Платёжная система временно недоступна. Попробуйте позже или обратитесь в поддержку."
                )
            raise PaymentGatewayError(f"Ошибка платёжной системы: {message}")

        return data

    # ============================================================
    # СОЗДАНИЕ ПЛАТЕЖА
    # ============================================================

    async def create_payment(
        self,
        amount: Decimal,
        ext_id: str,
        items: List[OzonPayItem],
    ) -> PaymentCreateResult:
        """
        Создать заказ в Ozon Pay.

        Параметры:
            amount: Сумма к оплате в рублях (с доставкой)
            ext_id: Наш уникальный ID платежа (order_<id>_<ts> / balance_<id>_<ts>)
            items: Позиции чека

        Возвращает:
            PaymentCreateResult: ID заказа в Ozon Pay и ссылка на оплату

        Исключения:
            PaymentServiceUnavailable: API недоступен или не настроен
            PaymentGatewayError: Ошибка API или заказ сразу "оплачен"
        """
        if not self.is_configured:
            raise PaymentServiceUnavailable("Платёжная система не настроена")

        value = to_kopecks(amount)
        expires_at = ""

        body = {
            "accessKey": self.access_key,
            "amount": {"currencyCode": CURRENCY_RUB, "value": value},
            "enableFiscalization": True,
            "expiresAt": expires_at,
            "extId": ext_id,
            "fiscalizationType": FISCALIZATION_TYPE,
            "paymentAlgorithm": PAYMENT_ALGORITHM,
            "successUrl": settings.OZONPAY_SUCCESS_URL,
            "failUrl": settings.OZONPAY_FAIL_URL,
            "notificationUrl": settings.OZONPAY_WEBHOOK_URL,
            "requestSign": self.sign_create_order(
                expires_at, ext_id, FISCALIZATION_TYPE, PAYMENT_ALGORITHM, CURRENCY_RUB, value
            ),
            "items": [item.to_api() for item in items],
        }

        data = await self._post("createOrder", body, retry_on_timeout=False)

        order = data.get("order")
        if not order or not order.get("id"):
            logger.error(f"❌ Ozon Pay createOrder: неожиданный ответ {data}")
            raise PaymentGatewayError("Некорректный ответ платёжной системы")

        if order.get("status") == self.STATUS_PAID:
            # Заказ не может быть оплачен в момент создания: так ведут себя
            # тестовые ключи на боевом окружении или чужой каталог
            logger.critical(
                f"🚨 Ozon Pay вернул STATUS_PAID при создании: id={order.get('id')}, "
                f"extId={ext_id}, returned extId={order.get('extId')}"
            )
            raise PaymentGatewayError(
                "Ошибка платёжной системы: заказ отмечен оплаченным до оплаты. "
                "Не оплачивайте заказ повторно и обратитесь в поддержку."
            )

        returned_items = order.get("items")
        if isinstance(returned_items, list) and len(returned_items) != len(items):
            logger.error(
                f"🚨 Ozon Pay: отправлено позиций {len(items)}, получено {len(returned_items)}"
            )

        logger.info(f"💳 Платёж Ozon Pay создан: {order['id']} ({ext_id}, {amount} ₽)")

        return PaymentCreateResult(
            payment_id=str(order["id"]),
            payment_url=order.get("payLink"),
            status=order.get("status"),
            ext_id=ext_id,
        )

    # ============================================================
    # ИНФОРМАЦИЯ О ЗАКАЗЕ
    # ============================================================

    async def get_order_details(self, order_id: str, ext_id: str = "") -> dict:
        """Детали заказа в Ozon Pay."""
        if not self.is_configured:
            raise PaymentServiceUnavailable("Платёжная система не настроена")
        return await self._post("getOrderDetails", {
            "id": order_id,
            "extId": ext_id or "",
            "accessKey": self.access_key,
            "requestSign": self.sign_order_request(order_id),
        })

    async def get_order_status(self, order_id: str, ext_id: str = "") -> dict:
        """Статус заказа в Ozon Pay."""
        if not self.is_configured:
            raise PaymentServiceUnavailable("Платёжная система не настроена")
        return await self._post("getOrderStatus", {
            "id": order_id,
            "extId": ext_id or "",
            "accessKey": self.access_key,
            "requestSign": self.sign_order_request(order_id),
        })


# ============================================================
# SINGLETON
# ============================================================

_payment_service: Optional[OzonPayClient] = None


def get_payment_service() -> OzonPayClient:
    """
    Получить экземпляр клиента Ozon Pay (singleton).

    Пример:
        service = get_payment_service()
        await service.get_order_status("...")
    """
    global _payment_service

    if _payment_service is None:
        _payment_service = OzonPayClient()

    return _payment_service
