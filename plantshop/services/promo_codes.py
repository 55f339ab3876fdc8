"""
Модуль: services/promo_codes.py
Описание: Промокоды: проверка, расчёт скидки, учёт использований
Проект: Plant Shop Backend

Правила:
    - Код хранится и сравнивается в верхнем регистре
    - Промокод действует, если активен, текущая дата внутри
      [start_date, end_date] и лимит использований не исчерпан
    - Скидка считается только от суммы товаров (без доставки)
      и не может её превышать
    - Один пользователь применяет один промокод только один раз
      (таблица promo_code_uses, уникальная пара promo_code_id + user_id)

redeem() и release() не делают commit: они вызываются внутри
транзакции оформления / удаления заказа.

Использование:
    service = PromoCodeService(db)
    promo, discount = service.check("SPRING10", Decimal("3000"), user_id=7)
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from plantshop.database.models import DiscountType, PromoCodeCreate, PromoCodeUpdate, PromoValidation
from plantshop.database.tables import PromoCode, PromoCodeUse, utcnow
from plantshop.utils.exceptions import NotFoundError, PromoCodeError, ValidationError


logger = logging.getLogger("plantshop.promo")


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def calculate_discount(discount_type: str, discount_value, subtotal) -> Decimal:
    """
    Рассчитать скидку.

    Параметры:
        discount_type: "percentage" или "fixed"
        discount_value: Процент или сумма в рублях
        subtotal: Сумма товаров без доставки

    Возвращает:
        Decimal: Скидка, не больше subtotal и не меньше 0

    Пример:
        calculate_discount("percentage", 10, Decimal("2555"))  # Decimal("256")
        calculate_discount("fixed", 5000, Decimal("3000"))     # Decimal("3000")
    """
    subtotal = Decimal(str(subtotal))
    value = Decimal(str(discount_value))

    if subtotal <= 0:
        return Decimal("0")

    if discount_type == DiscountType.PERCENTAGE.value:
        # Процентная скидка округляется до целых рублей
        discount = (subtotal * value / Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    else:
        discount = value

    return max(Decimal("0"), min(discount, subtotal))


class PromoCodeService:
    """Промокоды и журнал их использования."""

    def __init__(self, db: Session):
        self.db = db

    # ============================================================
    # ПРОВЕРКА
    # ============================================================

    def get_by_code(self, code: str) -> Optional[PromoCode]:
        return self.db.scalar(select(PromoCode).where(PromoCode.code == normalize_code(code)))

    def is_usable(self, promo: PromoCode) -> bool:
        """Активен, в сроке действия и лимит не исчерпан."""
        now = utcnow()
        if not promo.is_active:
            return False
        if promo.start_date and promo.start_date > now:
            return False
        if promo.end_date and promo.end_date < now:
            return False
        if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
            return False
        return True

    def has_used(self, promo_id: int, user_id: int) -> bool:
        return self.db.scalar(
            select(func.count(PromoCodeUse.id)).where(
                PromoCodeUse.promo_code_id == promo_id,
                PromoCodeUse.user_id == user_id
            )
        ) > 0

    def check(self, code: str, subtotal, user_id: Optional[int] = None) -> Tuple[PromoCode, Decimal]:
        """
        Проверить промокод для суммы товаров.

        Параметры:
            code: Промокод (регистр не важен)
            subtotal: Сумма товаров без доставки
            user_id: Пользователь (для проверки повторного использования)

        Возвращает:
            (PromoCode, Decimal): Промокод и скидка

        Исключения:
            NotFoundError: Промокод не найден или недействителен
            PromoCodeError: Не выполнены условия применения
        """
        promo = self.get_by_code(code)
        if promo is None or not self.is_usable(promo):
            raise NotFoundError("Промокод не найден или недействителен", code="PROMO_CODE_NOT_FOUND")

        subtotal = Decimal(str(subtotal))

        if promo.min_order_amount and subtotal < Decimal(str(promo.min_order_amount)):
            raise PromoCodeError(
                f"Минимальная сумма заказа для применения промокода: {promo.min_order_amount} ₽"
            )

        if user_id is not None and self.has_used(promo.id, user_id):
            raise PromoCodeError("Вы уже использовали этот промокод", code="PROMO_CODE_ALREADY_USED")

        return promo, calculate_discount(promo.discount_type, promo.discount_value, subtotal)

    def validate(self, code: str, cart_total, user_id: Optional[int] = None) -> PromoValidation:
        """Проверка промокода для корзины (эндпоинт /validate)."""
        promo, discount = self.check(code, cart_total, user_id)
        return PromoValidation(
            valid=True,
            code=promo.code,
            discount=discount,
            final_amount=Decimal(str(cart_total)) - discount,
            message=promo.description
        )

    # ============================================================
    # УЧЁТ ИСПОЛЬЗОВАНИЙ (ВНУТРИ ТРАНЗАКЦИИ ЗАКАЗА)
    # ============================================================

    def redeem(self, promo: PromoCode, user_id: int, order_id: int, discount) -> PromoCodeUse:
        """
        Записать использование промокода.

        Счётчик увеличивается условным UPDATE, поэтому лимит
        max_uses не превышается даже при параллельных заказах.

        Исключения:
            PromoCodeError: Пользователь уже использовал код или лимит исчерпан
        """
        if self.has_used(promo.id, user_id):
            raise PromoCodeError("Вы уже использовали этот промокод", code="PROMO_CODE_ALREADY_USED")

        counted = self.db.execute(
            update(PromoCode)
            .where(
                PromoCode.id == promo.id,
                (PromoCode.max_uses.is_(None)) | (PromoCode.current_uses < PromoCode.max_uses)
            )
            .values(current_uses=PromoCode.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        if counted.rowcount != 1:
            raise PromoCodeError("Лимит использований промокода исчерпан")

        use = PromoCodeUse(
            promo_code_id=promo.id,
            user_id=user_id,
            order_id=order_id,
            discount_amount=discount
        )
        self.db.add(use)
        try:
            self.db.flush()
        except IntegrityError:
            raise PromoCodeError("Вы уже использовали этот промокод", code="PROMO_CODE_ALREADY_USED") from None

        logger.info(f"🎟  Промокод {promo.code} применён к заказу #{order_id} (скидка {discount} ₽)")
        return use

    def release(self, order_id: int) -> int:
        """
        Отменить использования промокода по заказу.

        Возвращает:
            int: Сколько использований отменено
        """
        uses = self.db.scalars(select(PromoCodeUse).where(PromoCodeUse.order_id == order_id)).all()
        for use in uses:
            self.db.execute(
                update(PromoCode)
                .where(PromoCode.id == use.promo_code_id, PromoCode.current_uses > 0)
                .values(current_uses=PromoCode.current_uses - 1)
                .execution_options(synchronize_session=False)
            )
            self.db.delete(use)
        return len(uses)

    # ============================================================
    # АДМИНКА
    # ============================================================

    def list_all(self) -> List[PromoCode]:
        return list(self.db.scalars(select(PromoCode).order_by(PromoCode.created_at.desc())))

    def get(self, promo_id: int) -> PromoCode:
        promo = self.db.get(PromoCode, promo_id)
        if promo is None:
            raise NotFoundError("Промокод не найден")
        return promo

    def create(self, data: PromoCodeCreate) -> PromoCode:
        code = normalize_code(data.code)
        if self.get_by_code(code):
            raise ValidationError("Промокод с таким кодом уже существует")
        if data.start_date and data.end_date and data.start_date > data.end_date:
            raise ValidationError("Дата окончания раньше даты начала")

        promo = PromoCode(**data.model_dump(exclude={"code"}), code=code, current_uses=0)
        promo.discount_type = data.discount_type.value
        self.db.add(promo)
        self.db.commit()
        self.db.refresh(promo)
        logger.info(f"🎟  Создан промокод {promo.code}")
        return promo

    def update(self, promo_id: int, data: PromoCodeUpdate) -> PromoCode:
        promo = self.get(promo_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if field == "discount_type" and value is not None:
                value = DiscountType(value).value
            setattr(promo, field, value)
        self.db.commit()
        self.db.refresh(promo)
        return promo

    def delete(self, promo_id: int) -> None:
        promo = self.get(promo_id)
        self.db.execute(delete(PromoCodeUse).where(PromoCodeUse.promo_code_id == promo.id))
        self.db.delete(promo)
        self.db.commit()
