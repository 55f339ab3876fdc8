"""
Модуль: services/order_service.py
Описание: Оформление заказов, оплата и смена статусов
Проект: Plant Shop Backend

Способы оплаты:
    balance         — списание с баланса, заказ сразу оплачен
    directTransfer  — перевод по реквизитам + скриншот, проверяет админ
    ozonpay         — онлайн-оплата, статус приходит webhook'ом

Жизненный цикл (подробно в services/order_state.py):

    AWAITING_PAYMENT ──attach_proof──▶ PENDING_VERIFICATION ──submit──▶ VERIFICATION
           │                                   │                            │
           └────────────── pay ────────────────┴──────────── pay ───────────┘
                                               ▼
                                             PAID ──ship──▶ SHIPPED ──complete──▶ COMPLETED

Остатки на складе списываются один раз на заказ: флаг
product_quantities_reduced переключается условным UPDATE 0 → 1 в той же
транзакции, что и смена статуса. Повторный webhook или повторный клик
админа второй раз остатки не спишут.

Использование:
    service = OrderService(db)
    response = await service.create_order(current_user, request)
"""

import logging
import time
from collections import OrderedDict
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from plantshop.database.models import (
    AdminOrderUpdate, CreateOrderRequest, CreateOrderResponse,
    DeliveryType, Order as OrderModel, OrderItemSnapshot, PaymentMethod
)
from plantshop.database.tables import Order, Product, User
from plantshop.services.balance_service import BalanceService
from plantshop.services.notification_service import (
    NotificationService, get_notification_service, load_admin_channel
)
from plantshop.services.order_state import (
    UNPAID_STATES, OrderEvent, OrderState, apply_state, can_transition,
    event_for_admin_status, is_already_applied, next_state
)
from plantshop.services.payment_service import (
    OzonPayClient, OzonPayItem, OzonPayWebhook, PaymentCreateResult,
    WebhookStatus, get_payment_service
)
from plantshop.services.promo_codes import PromoCodeService
from plantshop.utils.exceptions import (
    InsufficientFundsError, InvalidStateTransition, NotFoundError,
    PaymentGatewayError, PermissionDeniedError, PromoCodeError,
    ValidationError, WebhookSignatureError
)


logger = logging.getLogger("plantshop.orders")


ZERO = Decimal("0")


# ============================================================
# ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ
# ============================================================

def order_to_model(order: Order) -> OrderModel:
    """Строка orders → модель ответа API (с вычисленным state)."""
    state = OrderState.from_columns(order.payment_status, order.order_status)
    return OrderModel(
        id=order.id,
        user_id=order.user_id,
        items=[OrderItemSnapshot(**item) for item in order.items or []],
        total_amount=order.total_amount,
        delivery_amount=order.delivery_amount or ZERO,
        delivery_type=order.delivery_type,
        delivery_speed=order.delivery_speed,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        order_status=order.order_status,
        state=state.value if state else "invalid",
        product_quantities_reduced=bool(order.product_quantities_reduced),
        promo_code=order.promo_code,
        promo_code_discount=order.promo_code_discount or ZERO,
        full_name=order.full_name,
        phone=order.phone,
        address=order.address,
        comment=order.comment,
        need_insulation=bool(order.need_insulation),
        payment_proof_url=order.payment_proof_url,
        admin_comment=order.admin_comment,
        tracking_number=order.tracking_number,
        estimated_delivery_date=order.estimated_delivery_date,
        ozonpay_payment_url=order.ozonpay_payment_url,
        created_at=order.created_at,
        updated_at=order.updated_at
    )


def build_receipt_items(order_id: int, items: List[dict], discount, delivery_amount, delivery_type: str) -> List[OzonPayItem]:
    """
    Позиции чека для Ozon Pay.

    Скидка промокода распределяется по позициям пропорционально их
    сумме, остаток от округления уходит на последнюю позицию.
    Доставка добавляется отдельной позицией (кроме самовывоза).

    Пример:
        build_receipt_items(12, [{"id": 1, "name": "Фикус", "price": 1000, "quantity": 2}], 200, 350, "cdek")
        # [Фикус × 2 по 900 ₽, Доставка × 1 по 350 ₽]
    """
    discount = Decimal(str(discount or 0))
    total_items = sum((Decimal(str(i["price"])) * i["quantity"] for i in items), ZERO)
    remaining = discount
    stamp = int(time.time())

    receipt = []
    for index, item in enumerate(items):
        price = Decimal(str(item["price"]))
        quantity = int(item["quantity"])
        line_total = price * quantity

        if index == len(items) - 1:
            item_discount = remaining
        elif total_items > 0:
            item_discount = (line_total / total_items * discount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            remaining -= item_discount
        else:
            item_discount = ZERO

        unit_price = max(ZERO, price - item_discount / quantity)
        receipt.append(OzonPayItem(
            # Уникальный extId и название, чтобы Ozon Pay не сопоставлял позицию со своим каталогом
            ext_id=f"item_{stamp}_{item['id']}",
            name=f"{item['name']} [Заказ #{order_id}]",
            price=unit_price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            quantity=quantity
        ))

    delivery_amount = Decimal(str(delivery_amount or 0))
    if delivery_amount > 0 and delivery_type != DeliveryType.PICKUP.value:
        receipt.append(OzonPayItem(ext_id="delivery-service", name="Доставка товаров", price=delivery_amount))

    return receipt


# ============================================================
# СЕРВИС ЗАКАЗОВ
# ============================================================

class OrderService:
    """
    Заказы и их оплата.

    Параметры:
        db: Сессия SQLAlchemy (одна на запрос)
        payments: Клиент Ozon Pay (по умолчанию синглтон)
        notifier: Сервис уведомлений (по умолчанию синглтон)
    """

    def __init__(
        self,
        db: Session,
        payments: Optional[OzonPayClient] = None,
        notifier: Optional[NotificationService] = None
    ):
        self.db = db
        self.payments = payments or get_payment_service()
        self.notifier = notifier or get_notification_service()
        self.promo = PromoCodeService(db)

    # ============================================================
    # ЗАПРОСЫ
    # ============================================================

    def get(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Заказ не найден")
        return order

    def get_for_user(self, order_id: int, user: User) -> Order:
        """Заказ, доступный пользователю (владелец или админ)."""
        order = self.get(order_id)
        if order.user_id != user.id and not user.is_admin:
            raise PermissionDeniedError("Нет доступа к этому заказу")
        return order

    def list_for_user(self, user_id: int) -> List[Order]:
        return list(self.db.scalars(
            select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
        ))

    def list_all(self) -> List[Order]:
        return list(self.db.scalars(select(Order).order_by(Order.created_at.desc(), Order.id.desc())))

    # ============================================================
    # ОСТАТКИ И ПЕРЕХОДЫ
    # ============================================================

    def reduce_stock_once(self, order: Order) -> bool:
        """
        Списать остатки по заказу, если ещё не списаны.

        Работает внутри транзакции вызывающего кода (без commit).

        Возвращает:
            bool: True если остатки списаны сейчас, False если уже были списаны
        """
        gate = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.product_quantities_reduced.is_(False))
            .values(product_quantities_reduced=True)
            .execution_options(synchronize_session=False)
        )
        if gate.rowcount != 1:
            logger.info(f"ℹ️  Остатки по заказу #{order.id} уже списаны")
            return False

        for item in order.items or []:
            quantity = int(item["quantity"])
            # Остаток не уходит в минус, даже если товар успели раскупить
            self.db.execute(
                update(Product)
                .where(Product.id == item["id"])
                .values(quantity=case(
                    (Product.quantity > quantity, Product.quantity - quantity),
                    else_=0
                ))
                .execution_options(synchronize_session=False)
            )

        order.product_quantities_reduced = True
        logger.info(f"📦 Остатки по заказу #{order.id} списаны")
        return True

    def restore_stock(self, order: Order) -> bool:
        """Вернуть остатки на склад (при удалении заказа)."""
        if not order.product_quantities_reduced:
            return False

        for item in order.items or []:
            self.db.execute(
                update(Product)
                .where(Product.id == item["id"])
                .values(quantity=Product.quantity + int(item["quantity"]))
                .execution_options(synchronize_session=False)
            )
        order.product_quantities_reduced = False
        return True

    def apply_transition(self, order: Order, event: OrderEvent) -> bool:
        """
        Применить событие к заказу (без commit).

        Переход в оплаченное состояние списывает остатки через флаг.

        Возвращает:
            bool: True если состояние изменилось, False если событие уже было применено

        Исключения:
            InvalidStateTransition: Событие недопустимо в текущем состоянии
        """
        state = OrderState.of(order)
        if is_already_applied(state, event):
            return False

        new_state = next_state(state, event)
        apply_state(order, new_state)

        if new_state.is_paid and not state.is_paid:
            self.reduce_stock_once(order)

        logger.info(f"🔄 Заказ #{order.id}: {state.value} → {new_state.value} ({event.value})")
        return new_state != state

    # ============================================================
    # ОФОРМЛЕНИЕ
    # ============================================================

    def _resolve_customer(self, current_user: User, requested_id: Optional[int]) -> User:
        if requested_id is None or requested_id == current_user.id:
            return current_user
        if not current_user.is_admin:
            raise PermissionDeniedError("Нельзя оформить заказ за другого пользователя")
        customer = self.db.get(User, requested_id)
        if customer is None:
            raise NotFoundError("Пользователь не найден")
        return customer

    def _collect_items(self, request: CreateOrderRequest) -> List[dict]:
        """Снимок позиций по текущему каталогу с проверкой остатков."""
        if not request.items:
            raise ValidationError("Корзина пуста")

        quantities = OrderedDict()
        for item in request.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        snapshot = []
        for product_id, quantity in quantities.items():
            product = self.db.get(Product, product_id)
            if product is None:
                raise NotFoundError(f"Товар #{product_id} не найден")
            if product.quantity < quantity:
                raise ValidationError(
                    f"Недостаточно товара «{product.name}»: в наличии {product.quantity} шт."
                )
            snapshot.append({
                "id": product.id,
                "name": product.name,
                "price": float(product.price),
                "quantity": quantity,
            })
        return snapshot

    async def create_order(self, current_user: User, request: CreateOrderRequest) -> CreateOrderResponse:
        """
        Оформить заказ.

        Параметры:
            current_user: Кто оформляет
            request: Корзина, доставка, способ оплаты, промокод

        Возвращает:
            CreateOrderResponse: Заказ и (для Ozon Pay) ссылка на оплату
            или payment_error, если платёж создать не удалось

        Исключения:
            ValidationError: Пустая корзина, нет остатков, сумма 0 для Ozon Pay
            InsufficientFundsError: Не хватает средств на балансе
            PromoCodeError / NotFoundError: Промокод не подходит
        """
        customer = self._resolve_customer(current_user, request.user_id)
        items = self._collect_items(request)

        subtotal = sum((Decimal(str(i["price"])) * i["quantity"] for i in items), ZERO)
        delivery = Decimal(str(request.delivery_amount))

        promo = None
        discount = ZERO
        if request.promo_code:
            promo, discount = self.promo.check(request.promo_code, subtotal, customer.id)

        total = max(ZERO, subtotal - discount) + delivery
        method = request.payment_method

        if method == PaymentMethod.OZONPAY and total <= 0:
            raise ValidationError("Сумма заказа для онлайн-оплаты должна быть больше нуля")

        if method == PaymentMethod.BALANCE:
            self.db.refresh(customer)
            if Decimal(str(customer.balance or 0)) < total:
                raise InsufficientFundsError(
                    f"Недостаточно средств на балансе: нужно {total} ₽, доступно {customer.balance} ₽"
                )

        # 1. Одна транзакция: заказ, промокод, списание баланса, остатки
        try:
            order = Order(
                user_id=customer.id,
                items=items,
                total_amount=total,
                delivery_amount=delivery,
                delivery_type=request.delivery_type.value,
                delivery_speed=request.delivery_speed.value,
                payment_method=method.value,
                product_quantities_reduced=False,
                promo_code=promo.code if promo else None,
                promo_code_discount=discount,
                full_name=request.full_name or customer.full_name,
                phone=request.phone or customer.phone,
                address=request.address or customer.address,
                comment=request.comment,
                need_insulation=request.need_insulation,
                payment_proof_url=request.payment_proof_url
            )
            apply_state(order, OrderState.AWAITING_PAYMENT)
            self.db.add(order)
            self.db.flush()

            if promo is not None:
                self.promo.redeem(promo, customer.id, order.id, discount)

            if method == PaymentMethod.BALANCE:
                self._debit_balance(customer.id, total)
                self.apply_transition(order, OrderEvent.PAY)
            elif request.payment_proof_url:
                self.apply_transition(order, OrderEvent.ATTACH_PROOF)
                self.reduce_stock_once(order)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(order)
        logger.info(
            f"🛒 Заказ #{order.id} оформлен: {total} ₽, оплата {method.value}, "
            f"пользователь #{customer.id}"
        )

        # 2. Уведомление администратору (ошибка не влияет на заказ)
        await self.notifier.notify_new_order(load_admin_channel(self.db), order)

        response = CreateOrderResponse(order=order_to_model(order))

        # 3. Онлайн-оплата
        if method == PaymentMethod.OZONPAY:
            try:
                payment = await self._create_gateway_payment(order, f"order_{order.id}_{int(time.time())}")
            except PaymentGatewayError as e:
                logger.error(f"❌ Платёж для заказа #{order.id} не создан: {e.message}")
                response.payment_error = e.message
                response.payment_error_code = e.code
                return response

            response.payment_url = payment.payment_url
            response.payment_id = payment.payment_id
            response.order = order_to_model(order)

        return response

    def _debit_balance(self, user_id: int, amount: Decimal) -> None:
        """Списать с баланса одним условным UPDATE (без commit)."""
        result = self.db.execute(
            update(User)
            .where(User.id == user_id, User.balance >= amount)
            .values(balance=User.balance - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InsufficientFundsError("Недостаточно средств на балансе")

    async def _create_gateway_payment(self, order: Order, ext_id: str) -> PaymentCreateResult:
        """Создать платёж Ozon Pay и сохранить его в заказе."""
        items = build_receipt_items(
            order.id, order.items, order.promo_code_discount, order.delivery_amount, order.delivery_type
        )
        payment = await self.payments.create_payment(Decimal(str(order.total_amount)), ext_id, items)

        order.ozonpay_payment_id = payment.payment_id
        order.ozonpay_payment_url = payment.payment_url
        order.ozonpay_payment_status = payment.status
        self.db.commit()
        self.db.refresh(order)
        return payment

    # ============================================================
    # ДЕЙСТВИЯ ПОКУПАТЕЛЯ
    # ============================================================

    async def attach_payment_proof(self, order_id: int, user: User, proof_url: str) -> Order:
        """
        Прикрепить скриншот перевода.

        AWAITING_PAYMENT → PENDING_VERIFICATION, админ получает уведомление.
        """
        order = self.get_for_user(order_id, user)
        self.apply_transition(order, OrderEvent.ATTACH_PROOF)
        order.payment_proof_url = proof_url
        self.db.commit()
        self.db.refresh(order)

        await self.notifier.notify_payment_proof(load_admin_channel(self.db), order)
        return order

    async def submit_for_verification(self, order_id: int, user: User) -> Order:
        """Отправить оплату на проверку (нужен загруженный скриншот)."""
        order = self.get_for_user(order_id, user)
        if not order.payment_proof_url:
            raise ValidationError("Сначала загрузите скриншот оплаты")

        changed = self.apply_transition(order, OrderEvent.SUBMIT_FOR_VERIFICATION)
        self.db.commit()
        self.db.refresh(order)

        if changed:
            await self._notify_customer_status(order)
        return order

    async def retry_payment(self, order_id: int, user: User) -> PaymentCreateResult:
        """
        Повторно создать платёж Ozon Pay для неоплаченного заказа.

        Исключения:
            ValidationError: Заказ не на онлайн-оплате
            InvalidStateTransition: Заказ уже оплачен или отменён
            PaymentServiceUnavailable: Ozon Pay недоступен (503)
        """
        order = self.get_for_user(order_id, user)
        if order.payment_method != PaymentMethod.OZONPAY.value:
            raise ValidationError("Повторная оплата доступна только для онлайн-оплаты")

        state = OrderState.of(order)
        if not can_transition(state, OrderEvent.RETRY):
            raise InvalidStateTransition("Заказ уже оплачен или отменён")

        payment = await self._create_gateway_payment(order, f"{order.id}_retry_{int(time.time())}")

        self.apply_transition(order, OrderEvent.RETRY)
        self.db.commit()
        logger.info(f"🔁 Повторный платёж для заказа #{order.id}: {payment.payment_id}")
        return payment

    def apply_promo(self, order_id: int, user: User, code: str) -> Order:
        """
        Применить промокод к уже оформленному неоплаченному заказу.

        Скидка считается от суммы товаров (total − доставка).
        """
        order = self.get_for_user(order_id, user)

        if OrderState.of(order) not in UNPAID_STATES:
            raise InvalidStateTransition("Промокод можно применить только к неоплаченному заказу")
        if order.promo_code:
            raise PromoCodeError("К заказу уже применён промокод")

        delivery = Decimal(str(order.delivery_amount or 0))
        subtotal = Decimal(str(order.total_amount)) - delivery
        promo, discount = self.promo.check(code, subtotal, order.user_id)

        try:
            self.promo.redeem(promo, order.user_id, order.id, discount)
            order.promo_code = promo.code
            order.promo_code_discount = discount
            order.total_amount = max(ZERO, subtotal - discount) + delivery
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(order)
        logger.info(f"🎟  Промокод {promo.code} применён к заказу #{order.id}, новая сумма {order.total_amount} ₽")
        return order

    # ============================================================
    # ДЕЙСТВИЯ АДМИНИСТРАТОРА
    # ============================================================

    async def admin_update(self, order_id: int, data: AdminOrderUpdate) -> Order:
        """
        Обновить заказ из админки.

        Статус переводится в событие ("paid"/"processing" → оплата,
        "shipped" → отправка и т.д.). Смена статуса уведомляет покупателя.
        """
        order = self.get(order_id)
        changed = False

        if data.order_status is not None:
            status = data.order_status.strip().lower()
            event = event_for_admin_status(status)
            if event is None:
                if status != "pending":
                    raise ValidationError(f"Неизвестный статус: {data.order_status}")
                if OrderState.of(order) != OrderState.AWAITING_PAYMENT:
                    raise InvalidStateTransition("Вернуть заказ в ожидание оплаты нельзя")
            else:
                changed = self.apply_transition(order, event)

        if data.admin_comment is not None:
            order.admin_comment = data.admin_comment
        if data.tracking_number is not None:
            order.tracking_number = data.tracking_number
        if data.estimated_delivery_date is not None:
            order.estimated_delivery_date = data.estimated_delivery_date

        self.db.commit()
        self.db.refresh(order)

        if changed:
            await self._notify_customer_status(order)
        return order

    async def update_status(self, order_id: int, status: str) -> Order:
        return await self.admin_update(order_id, AdminOrderUpdate(order_status=status))

    def delete_order(self, order_id: int) -> None:
        """
        Удалить заказ: вернуть промокод и остатки.

        Всё в одной транзакции.
        """
        order = self.get(order_id)
        try:
            released = self.promo.release(order.id)
            restored = self.restore_stock(order)
            self.db.delete(order)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"🗑  Заказ #{order_id} удалён (промокодов возвращено: {released}, "
            f"остатки возвращены: {'да' if restored else 'нет'})"
        )

    # ============================================================
    # WEBHOOK OZON PAY
    # ============================================================

    async def handle_gateway_webhook(self, payload: dict) -> dict:
        """
        Обработать уведомление Ozon Pay.

        Параметры:
            payload: JSON тела запроса как есть

        Возвращает:
            dict: {"status": "ok" | "ignored", ...}

        Исключения:
            WebhookSignatureError: Подпись не совпала (401)
        """
        if not self.payments.verify_webhook_signature(payload):
            logger.warning(f"⚠️  Webhook Ozon Pay с неверной подписью: orderID={payload.get('orderID')}")
            raise WebhookSignatureError("Неверная подпись уведомления")

        webhook = OzonPayWebhook(**payload)
        logger.info(
            f"📩 Webhook Ozon Pay: orderID={webhook.orderID}, extOrderID={webhook.extOrderID}, "
            f"status={webhook.status}"
        )

        if webhook.extOrderID.startswith("balance_"):
            return await BalanceService(self.db, self.payments, self.notifier).handle_topup_webhook(webhook)

        order = self.db.scalar(select(Order).where(Order.ozonpay_payment_id == str(webhook.orderID)))
        if order is None:
            logger.warning(f"⚠️  Заказ для платежа {webhook.orderID} не найден")
            return {"status": "ignored", "reason": "order_not_found"}

        order.ozonpay_payment_status = webhook.status
        if webhook.transactionID:
            order.ozonpay_transaction_id = str(webhook.transactionID)

        paid_now = False
        if webhook.status == WebhookStatus.COMPLETED:
            try:
                paid_now = self.apply_transition(order, OrderEvent.PAY)
            except InvalidStateTransition:
                logger.critical(
                    f"🚨 Оплата пришла для заказа #{order.id} в состоянии "
                    f"{order.payment_status}/{order.order_status}"
                )
        elif webhook.status == WebhookStatus.FAILED:
            state = OrderState.of(order)
            if state.is_paid:
                logger.warning(f"⚠️  Failed после оплаты для заказа #{order.id} проигнорирован")
            elif can_transition(state, OrderEvent.FAIL):
                self.apply_transition(order, OrderEvent.FAIL)

        self.db.commit()
        self.db.refresh(order)

        if webhook.status == WebhookStatus.COMPLETED and OrderState.of(order).is_paid:
            if paid_now:
                await self.notifier.notify_payment_received(load_admin_channel(self.db), order)
            # Чек отправляется на каждое уведомление Completed
            if order.user and order.user.telegram_chat_id:
                await self.notifier.send_receipt(order.user.telegram_chat_id, order)

        return {"status": "ok", "order_id": order.id, "state": OrderState.of(order).value}

    # ============================================================
    # УВЕДОМЛЕНИЯ
    # ============================================================

    async def _notify_customer_status(self, order: Order) -> bool:
        user = order.user
        if user is None or not user.telegram_chat_id:
            return False
        return await self.notifier.notify_order_status(user.telegram_chat_id, order)
