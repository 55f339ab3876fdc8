"""
Модуль: services/balance_service.py
Описание: Баланс пользователя: пополнение через Ozon Pay и начисление админом
Проект: Plant Shop Backend

Пополнение:
    1. create_topup() создаёт запись balance_topups (pending) и платёж
       Ozon Pay с extId вида balance_<topup_id>_<timestamp>
    2. Пользователь оплачивает по ссылке
    3. Webhook с extOrderID "balance_..." попадает в handle_topup_webhook()
       и зачисляет сумму

Зачисление происходит ровно один раз: статус пополнения переводится
pending → completed условным UPDATE, и только при успехе растёт баланс.

Использование:
    service = BalanceService(db)
    topup, payment = await service.create_topup(user, Decimal("1000"))
"""

import logging
import time
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from plantshop.database.models import TopupStatus
from plantshop.database.tables import BalanceTopup, User
from plantshop.services.notification_service import NotificationService, get_notification_service
from plantshop.services.payment_service import (
    OzonPayClient, OzonPayItem, OzonPayWebhook, PaymentCreateResult,
    WebhookStatus, get_payment_service
)
from plantshop.utils.exceptions import NotFoundError, PaymentGatewayError, ValidationError


logger = logging.getLogger("plantshop.balance")


class BalanceService:
    """Пополнения баланса и ручные начисления."""

    def __init__(
        self,
        db: Session,
        payments: Optional[OzonPayClient] = None,
        notifier: Optional[NotificationService] = None
    ):
        self.db = db
        self.payments = payments or get_payment_service()
        self.notifier = notifier or get_notification_service()

    # ============================================================
    # ПОПОЛНЕНИЕ ЧЕРЕЗ OZON PAY
    # ============================================================

    async def create_topup(self, user: User, amount: Decimal) -> Tuple[BalanceTopup, PaymentCreateResult]:
        """
        Создать пополнение и платёж Ozon Pay.

        Параметры:
            user: Кто пополняет
            amount: Сумма в рублях

        Возвращает:
            (BalanceTopup, PaymentCreateResult): Запись пополнения и ссылка на оплату

        Исключения:
            ValidationError: Сумма не больше нуля
            PaymentServiceUnavailable: Ozon Pay недоступен (503)
            PaymentGatewayError: Ozon Pay вернул ошибку
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationError("Сумма пополнения должна быть больше нуля")

        topup = BalanceTopup(user_id=user.id, amount=amount, status=TopupStatus.PENDING.value)
        self.db.add(topup)
        self.db.commit()
        self.db.refresh(topup)

        ext_id = f"balance_{topup.id}_{int(time.time())}"
        item = OzonPayItem(ext_id=f"balance_{topup.id}", name="Пополнение баланса", price=amount)

        try:
            payment = await self.payments.create_payment(amount, ext_id, [item])
        except PaymentGatewayError:
            topup.status = TopupStatus.FAILED.value
            self.db.commit()
            raise

        topup.ozonpay_payment_id = payment.payment_id
        topup.ozonpay_payment_url = payment.payment_url
        self.db.commit()
        self.db.refresh(topup)

        logger.info(f"💰 Пополнение #{topup.id} на {amount} ₽ создано (пользователь #{user.id})")
        return topup, payment

    async def handle_topup_webhook(self, webhook: OzonPayWebhook) -> dict:
        """
        Обработать webhook по пополнению (подпись уже проверена).

        Повторный Completed баланс второй раз не пополняет. Completed после
        Failed по тому же платежу (отказ, затем успешная попытка) зачисляется.
        """
        topup = self.db.scalar(
            select(BalanceTopup).where(BalanceTopup.ozonpay_payment_id == str(webhook.orderID))
        )
        if topup is None:
            logger.warning(f"⚠️  Пополнение для платежа {webhook.orderID} не найдено")
            return {"status": "ignored", "reason": "topup_not_found"}

        if webhook.status == WebhookStatus.COMPLETED:
            claimed = self.db.execute(
                update(BalanceTopup)
                .where(
                    BalanceTopup.id == topup.id,
                    BalanceTopup.status.in_([TopupStatus.PENDING.value, TopupStatus.FAILED.value]),
                )
                .values(status=TopupStatus.COMPLETED.value)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                self.db.rollback()
                logger.info(f"ℹ️  Пополнение #{topup.id} уже обработано")
                return {"status": "ok", "topup_id": topup.id, "credited": False}

            self._credit(topup.user_id, topup.amount)
            self.db.commit()

            user = self.db.get(User, topup.user_id)
            self.db.refresh(user)
            logger.info(f"✅ Баланс пользователя #{user.id} пополнен на {topup.amount} ₽")

            if user.telegram_chat_id:
                await self.notifier.notify_balance_topped_up(user.telegram_chat_id, topup.amount, user.balance)
            return {"status": "ok", "topup_id": topup.id, "credited": True}

        if webhook.status == WebhookStatus.FAILED:
            self.db.execute(
                update(BalanceTopup)
                .where(BalanceTopup.id == topup.id, BalanceTopup.status == TopupStatus.PENDING.value)
                .values(status=TopupStatus.FAILED.value)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            logger.info(f"❌ Пополнение #{topup.id} не оплачено")

        return {"status": "ok", "topup_id": topup.id, "credited": False}

    # ============================================================
    # ИСТОРИЯ И РУЧНОЕ НАЧИСЛЕНИЕ
    # ============================================================

    def history(self, user_id: int) -> List[BalanceTopup]:
        return list(self.db.scalars(
            select(BalanceTopup)
            .where(BalanceTopup.user_id == user_id)
            .order_by(BalanceTopup.created_at.desc(), BalanceTopup.id.desc())
        ))

    async def admin_add_balance(self, user_id: int, amount: Decimal) -> User:
        """Начислить сумму на баланс (из админки)."""
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationError("Сумма должна быть больше нуля")

        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("Пользователь не найден")

        self._credit(user_id, amount)
        self.db.commit()
        self.db.refresh(user)

        logger.info(f"👑 Админ начислил {amount} ₽ пользователю #{user_id}, баланс {user.balance} ₽")

        if user.telegram_chat_id:
            await self.notifier.notify_balance_topped_up(user.telegram_chat_id, amount, user.balance)
        return user

    def _credit(self, user_id: int, amount: Decimal) -> None:
        self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(balance=User.balance + amount)
            .execution_options(synchronize_session=False)
        )
