"""
Модуль: services/notification_service.py
Описание: Сервис уведомлений через Telegram Bot API
Проект: Plant Shop Backend

Отправляет сообщения о событиях магазина:
- Администратору: новый заказ, скриншот оплаты, оплата получена
- Покупателю: смена статуса заказа, чек после оплаты, пополнение баланса
- Всем подписанным пользователям: новое растение в каталоге

Как это работает:
    ┌──────────────┐     ┌───────────────────┐     ┌─────────────┐
    │ OrderService │────▶│NotificationService│────▶│ Telegram API│
    │ BalanceServ. │     │ (этот файл)       │     │ (Bot API)   │
    └──────────────┘     └───────────────────┘     └─────────────┘

Уведомления — "выстрелил и забыл": ни один метод не бросает
исключений, ошибка отправки логируется и возвращается False.
Заказ не откатывается из-за того, что Telegram недоступен.

Чат администратора и выключатель уведомлений хранятся в таблице
telegram_settings (редактируются в админке).

Использование:
    from plantshop.services.notification_service import get_notification_service, load_admin_channel

    notifier = get_notification_service()
    await notifier.notify_new_order(load_admin_channel(db), order)
"""

import asyncio
import html
import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional

import httpx
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from plantshop.config import settings
from plantshop.database.tables import TelegramSettings


logger = logging.getLogger("plantshop.notifications")


# ============================================================
# ТИПЫ УВЕДОМЛЕНИЙ
# ============================================================

class NotificationType(str, Enum):
    """
    Типы уведомлений.

    Каждый тип имеет свой шаблон сообщения и эмодзи.
    """
    # Администратору
    NEW_ORDER = "new_order"                            # Новый заказ
    PAYMENT_PROOF_UPLOADED = "payment_proof_uploaded"  # Загружен скриншот оплаты
    PAYMENT_RECEIVED = "payment_received"              # Оплата через Ozon Pay прошла
    TEST = "test"                                      # Проверка настроек

    # Покупателю
    ORDER_STATUS_CHANGED = "order_status_changed"
    RECEIPT = "receipt"                                # Чек после оплаты
    BALANCE_TOPPED_UP = "balance_topped_up"

    # Рассылка
    NEW_PRODUCT = "new_product"


# ============================================================
# ШАБЛОНЫ СООБЩЕНИЙ
# ============================================================

# Словарь шаблонов: {тип: (заголовок, текст)}
MESSAGE_TEMPLATES: Dict[NotificationType, tuple] = {

    NotificationType.NEW_ORDER: (
        "🛒 Новый заказ #{order_id}",
        """👤 {full_name}
📞 {phone}
📍 {address}

{items}

🚚 Доставка: {delivery_type} ({delivery_amount} ₽)
🎟 Промокод: {promo_code}
💰 Итого: <b>{total_amount} ₽</b>
💳 Оплата: {payment_method}"""
    ),

    NotificationType.PAYMENT_PROOF_UPLOADED: (
        "🧾 Скриншот оплаты",
        """Заказ <b>#{order_id}</b> на сумму <b>{total_amount} ₽</b>
Покупатель загрузил подтверждение перевода.

{proof_url}

Проверьте поступление и смените статус заказа."""
    ),

    NotificationType.PAYMENT_RECEIVED: (
        "💳 Оплата получена",
        """Заказ <b>#{order_id}</b> оплачен через Ozon Pay.
Сумма: <b>{total_amount} ₽</b>
Транзакция: {transaction_id}"""
    ),

    NotificationType.TEST: (
        "✅ Проверка уведомлений",
        "Бот магазина настроен правильно, уведомления будут приходить в этот чат."
    ),

    NotificationType.ORDER_STATUS_CHANGED: (
        "📦 Статус заказа #{order_id}",
        """Новый статус: <b>{status_text}</b>
Оплата: {payment_text}
{tracking}"""
    ),

    NotificationType.RECEIPT: (
        "🧾 Чек по заказу #{order_id}",
        """Спасибо за покупку! 🌿

{items}

🚚 Доставка: {delivery_amount} ₽
🎟 Скидка: {discount} ₽
💰 Оплачено: <b>{total_amount} ₽</b>

Мы начали собирать ваш заказ."""
    ),

    NotificationType.BALANCE_TOPPED_UP: (
        "💰 Баланс пополнен",
        """Зачислено: <b>{amount} ₽</b>
Текущий баланс: <b>{balance} ₽</b>"""
    ),

    NotificationType.NEW_PRODUCT: (
        "🌱 Новинка в каталоге!",
        """<b>{name}</b>
{description}

💰 Цена: <b>{price} ₽</b>

{url}"""
    ),
}


ORDER_STATUS_TEXT = {
    "pending": "⏳ Ожидает оплаты",
    "processing": "🔄 В обработке",
    "shipped": "🚚 Отправлен",
    "completed": "✅ Выполнен",
    "cancelled": "❌ Отменён",
}

PAYMENT_STATUS_TEXT = {
    "pending": "Ожидает оплаты",
    "pending_verification": "Скриншот загружен",
    "verification": "На проверке",
    "completed": "Оплачен",
    "failed": "Ошибка оплаты",
}

PAYMENT_METHOD_TEXT = {
    "balance": "С баланса",
    "directTransfer": "Перевод по реквизитам",
    "ozonpay": "Ozon Pay",
}

DELIVERY_TYPE_TEXT = {
    "cdek": "СДЭК",
    "russianPost": "Почта России",
    "pickup": "Самовывоз",
}


class AdminChannel(BaseModel):
    """Куда слать уведомления администратору."""
    bot_token: Optional[str] = None
    chat_id: Optional[str] = None
    enabled: bool = True

    @property
    def is_ready(self) -> bool:
        return bool(self.enabled and self.chat_id)


def load_admin_channel(db: Session) -> AdminChannel:
    """
    Прочитать настройки уведомлений из telegram_settings.

    Ошибка БД = уведомления администратору отключены.
    """
    try:
        row = db.scalar(select(TelegramSettings).limit(1))
    except SQLAlchemyError as e:
        logger.error(f"❌ Не удалось прочитать telegram_settings: {e}")
        return AdminChannel(enabled=False)

    if row is None:
        return AdminChannel(enabled=False)

    return AdminChannel(
        bot_token=row.bot_token or None,
        chat_id=row.chat_id or None,
        enabled=bool(row.enable_notifications)
    )


def _e(value) -> str:
    """Экранировать пользовательские данные для HTML-разметки Telegram."""
    if value is None or value == "":
        return "—"
    return html.escape(str(value))


def format_items(items: Iterable[dict]) -> str:
    lines = []
    for item in items or []:
        lines.append(f"• {_e(item.get('name'))} × {item.get('quantity')} — {item.get('price')} ₽")
    return "\n".join(lines) or "—"


# ============================================================
# СЕРВИС УВЕДОМЛЕНИЙ
# ============================================================

class NotificationService:
    """
    Сервис для отправки уведомлений через Telegram Bot API.

    Использует httpx для асинхронных запросов к API Telegram.

    Пример:
        service = NotificationService()
        await service.send_notification(
            chat_id=123456789,
            notification_type=NotificationType.BALANCE_TOPPED_UP,
            data={"amount": 500, "balance": 1500}
        )
    """

    # URL Telegram Bot API
    API_BASE = "https://api.telegram.org/bot{token}"

    # Пауза между сообщениями рассылки (лимиты Telegram)
    BROADCAST_DELAY_SECONDS = 0.1

    def __init__(self, bot_token: str = None, timeout: float = None, max_retries: int = None):
        """
        Параметры:
            bot_token: Токен бота (если None — берётся из настроек)
            timeout: Таймаут запроса в секундах
            max_retries: Повторы при сетевой ошибке
        """
        self.bot_token = bot_token or settings.TELEGRAM_BOT_TOKEN
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.max_retries = settings.HTTP_MAX_RETRIES if max_retries is None else max_retries

        if not self.bot_token:
            logger.warning("⚠️  NotificationService: TELEGRAM_BOT_TOKEN не настроен")

    # ============================================================
    # ОСНОВНОЙ МЕТОД ОТПРАВКИ
    # ============================================================

    async def send_message(
        self,
        chat_id,
        text: str,
        bot_token: Optional[str] = None,
        reply_markup: dict = None,
        parse_mode: str = "HTML"
    ) -> bool:
        """
        Отправить сообщение в чат.

        При сетевой ошибке запрос повторяется до max_retries раз.
        Ответ Telegram с ошибкой не повторяется.

        Параметры:
            chat_id: ID чата в Telegram
            text: Текст сообщения (HTML)
            bot_token: Токен бота (по умолчанию токен сервиса)
            reply_markup: Клавиатура

        Возвращает:
            bool: True если успешно
        """
        token = bot_token or self.bot_token
        if not token or not chat_id:
            logger.warning("⚠️  Нет токена бота или chat_id — уведомление не отправлено")
            return False

        payload = {"chat_id": chat_id, "text": text, "parse_mode": parse_mode}
        if reply_markup:
            payload["reply_markup"] = reply_markup

        url = f"{self.API_BASE.format(token=token)}/sendMessage"

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload)

                if response.status_code == 200 and response.json().get("ok"):
                    return True

                logger.warning(f"⚠️  Telegram API: HTTP {response.status_code}: {response.text[:200]}")
                return False

            except httpx.TransportError as e:
                logger.warning(f"⚠️  Сеть при отправке в чат {chat_id} (попытка {attempt + 1}): {e}")
                if attempt < self.max_retries:
                    await asyncio.sleep(0.5 * (attempt + 1))
            except Exception as e:
                logger.exception(f"⚠️  Ошибка отправки уведомления в чат {chat_id}: {e}")
                return False

        return False

    def render(self, notification_type: NotificationType, data: dict) -> Optional[str]:
        """Собрать текст по шаблону. None — не хватает данных."""
        template = MESSAGE_TEMPLATES.get(notification_type)
        if not template:
            logger.warning(f"⚠️  Неизвестный тип уведомления: {notification_type}")
            return None

        title, body = template
        try:
            return f"<b>{title.format(**data)}</b>\n\n{body.format(**data)}"
        except KeyError as e:
            logger.warning(f"⚠️  Не хватает данных для шаблона {notification_type.value}: {e}")
            return None

    async def send_notification(
        self,
        chat_id,
        notification_type: NotificationType,
        data: dict,
        bot_token: Optional[str] = None
    ) -> bool:
        """
        Отправить типизированное уведомление.

        Возвращает:
            bool: True если успешно
        """
        text = self.render(notification_type, data)
        if text is None:
            return False
        return await self.send_message(chat_id, text, bot_token=bot_token)

    async def _notify_admin(self, channel: AdminChannel, notification_type: NotificationType, data: dict) -> bool:
        if not channel.is_ready:
            logger.info(f"ℹ️  Уведомления администратору выключены ({notification_type.value})")
            return False
        return await self.send_notification(channel.chat_id, notification_type, data, bot_token=channel.bot_token)

    # ============================================================
    # АДМИНИСТРАТОРУ
    # ============================================================

    async def notify_new_order(self, channel: AdminChannel, order) -> bool:
        return await self._notify_admin(channel, NotificationType.NEW_ORDER, {
            "order_id": order.id,
            "full_name": _e(order.full_name),
            "phone": _e(order.phone),
            "address": _e(order.address),
            "items": format_items(order.items),
            "delivery_type": DELIVERY_TYPE_TEXT.get(order.delivery_type, _e(order.delivery_type)),
            "delivery_amount": order.delivery_amount,
            "promo_code": _e(order.promo_code),
            "total_amount": order.total_amount,
            "payment_method": PAYMENT_METHOD_TEXT.get(order.payment_method, _e(order.payment_method)),
        })

    async def notify_payment_proof(self, channel: AdminChannel, order) -> bool:
        proof = order.payment_proof_url or ""
        if proof.startswith("/"):
            proof = settings.SITE_URL.rstrip("/") + proof
        return await self._notify_admin(channel, NotificationType.PAYMENT_PROOF_UPLOADED, {
            "order_id": order.id,
            "total_amount": order.total_amount,
            "proof_url": _e(proof),
        })

    async def notify_payment_received(self, channel: AdminChannel, order) -> bool:
        return await self._notify_admin(channel, NotificationType.PAYMENT_RECEIVED, {
            "order_id": order.id,
            "total_amount": order.total_amount,
            "transaction_id": _e(order.ozonpay_transaction_id),
        })

    async def send_test(self, channel: AdminChannel) -> bool:
        """Проверочное сообщение (кнопка в настройках админки)."""
        if not channel.chat_id:
            return False
        return await self.send_notification(channel.chat_id, NotificationType.TEST, {}, bot_token=channel.bot_token)

    # ============================================================
    # ПОКУПАТЕЛЮ
    # ============================================================

    async def notify_order_status(self, chat_id, order) -> bool:
        tracking = f"📮 Трек-номер: <code>{_e(order.tracking_number)}</code>" if order.tracking_number else ""
        return await self.send_notification(chat_id, NotificationType.ORDER_STATUS_CHANGED, {
            "order_id": order.id,
            "status_text": ORDER_STATUS_TEXT.get(order.order_status, order.order_status),
            "payment_text": PAYMENT_STATUS_TEXT.get(order.payment_status, order.payment_status),
            "tracking": tracking,
        })

    async def send_receipt(self, chat_id, order) -> bool:
        """Чек после успешной оплаты."""
        return await self.send_notification(chat_id, NotificationType.RECEIPT, {
            "order_id": order.id,
            "items": format_items(order.items),
            "delivery_amount": order.delivery_amount,
            "discount": order.promo_code_discount or 0,
            "total_amount": order.total_amount,
        })

    async def notify_balance_topped_up(self, chat_id, amount, balance) -> bool:
        return await self.send_notification(chat_id, NotificationType.BALANCE_TOPPED_UP, {
            "amount": amount,
            "balance": balance,
        })

    # ============================================================
    # МАССОВАЯ РАССЫЛКА
    # ============================================================

    async def broadcast_new_product(self, chat_ids: List[str], product) -> dict:
        """
        Сообщить всем подписанным пользователям о новом растении.

        Отправка последовательная с паузой (лимиты Telegram).

        Возвращает:
            dict: {"success": N, "failed": M}
        """
        description = (product.description or "")[:300]
        data = {
            "name": _e(product.name),
            "description": _e(description) if description else "",
            "price": product.price,
            "url": f"{settings.SITE_URL.rstrip('/')}/product/{product.id}",
        }

        success = 0
        failed = 0
        for index, chat_id in enumerate(chat_ids):
            if await self.send_notification(chat_id, NotificationType.NEW_PRODUCT, data):
                success += 1
            else:
                failed += 1
            if index + 1 < len(chat_ids):
                await asyncio.sleep(self.BROADCAST_DELAY_SECONDS)

        logger.info(f"📣 Рассылка о товаре #{product.id}: отправлено {success}, ошибок {failed}")
        return {"success": success, "failed": failed}


# ============================================================
# СИНГЛТОН
# ============================================================

_notification_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    """Получить экземпляр NotificationService."""
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
