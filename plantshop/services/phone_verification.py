"""
Модуль: services/phone_verification.py
Описание: Логика подтверждения телефона в Telegram-боте
Проект: Plant Shop Backend

Бот (bot.py) только принимает апдейты и отвечает пользователю,
а решения принимаются здесь:
    1. /start <token> → start(token): есть ли такая заявка
    2. Пользователь делится контактом → confirm_contact(): номер
       сравнивается с номером заявки, при совпадении заявка
       помечается подтверждённой

Бот никогда не создаёт пользователей. Пользователя создаёт
финишер регистрации (services/registration.py), когда сайт
опрашивает check-phone-verification.

Использование:
    service = PhoneVerificationService(db)
    result = service.confirm_contact(token, "+7 999 123-45-67", chat_id=123)
    if result.verified:
        ...
"""

import logging
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from plantshop.database.tables import PendingRegistration, User
from plantshop.services.pending_registrations import PendingRegistrationStore
from plantshop.utils.phone import normalize_phone


logger = logging.getLogger("plantshop.verification")


class ContactCheckResult(BaseModel):
    """
    Результат проверки присланного контакта.

    reason заполняется при неудаче:
        not_found      — заявка по токену не найдена или истекла
        phone_mismatch — номер не совпал с номером заявки
        store_error    — заявку не удалось обновить
    """
    verified: bool
    expected_phone: Optional[str] = None
    received_phone: Optional[str] = None
    reason: Optional[str] = None


class PhoneVerificationService:
    """Сторона бота в процедуре подтверждения телефона."""

    def __init__(self, db: Session):
        self.db = db
        self.store = PendingRegistrationStore(db)

    def start(self, token: str) -> Optional[PendingRegistration]:
        """
        Обработать deep link /start <token>.

        Возвращает:
            PendingRegistration | None: Заявка, которую предстоит подтвердить
        """
        registration = self.store.find_by_token(token)
        if registration is None:
            logger.info("🔎 Deep link с неизвестным или истёкшим токеном")
        return registration

    def confirm_contact(
        self,
        token: str,
        received_phone: str,
        chat_id: Optional[int] = None
    ) -> ContactCheckResult:
        """
        Сверить присланный номер с номером заявки.

        Оба номера нормализуются одной и той же функцией.
        mark_verified вызывается только при точном совпадении.

        Параметры:
            token: Токен из deep link
            received_phone: Номер из контакта или текстового сообщения
            chat_id: Чат Telegram пользователя

        Возвращает:
            ContactCheckResult
        """
        received = normalize_phone(received_phone)
        registration = self.store.find_by_token(token)

        if registration is None:
            return ContactCheckResult(verified=False, received_phone=received, reason="not_found")

        expected = registration.phone

        if not received or received != expected:
            logger.warning(f"⚠️  Номер не совпал: ожидали {expected}, получили {received}")
            return ContactCheckResult(
                verified=False,
                expected_phone=expected,
                received_phone=received,
                reason="phone_mismatch"
            )

        if not self.store.mark_verified(expected, token, chat_id=chat_id):
            return ContactCheckResult(
                verified=False,
                expected_phone=expected,
                received_phone=received,
                reason="store_error"
            )

        return ContactCheckResult(verified=True, expected_phone=expected, received_phone=received)

    # ============================================================
    # ПРИВЯЗКА ЧАТА К СУЩЕСТВУЮЩЕМУ ПОЛЬЗОВАТЕЛЮ
    # ============================================================

    def link_chat(self, phone: str, chat_id: int) -> Optional[User]:
        """
        Привязать чат к уже существующему пользователю по телефону.

        Нужен пользователям, зарегистрированным раньше, чтобы получать
        уведомления о заказах. Нового пользователя не создаёт.

        Возвращает:
            User | None: Пользователь, к которому привязан чат
        """
        normalized = normalize_phone(phone)
        if not normalized:
            return None
        try:
            user = self.db.scalar(select(User).where(User.phone == normalized))
            if user is None:
                return None
            user.telegram_chat_id = str(chat_id)
            self.db.commit()
            logger.info(f"🔗 Чат {chat_id} привязан к пользователю #{user.id}")
            return user
        except SQLAlchemyError as e:
            logger.error(f"❌ Не удалось привязать чат: {e}")
            self.db.rollback()
            return None

    def unlink_chat(self, chat_id: int) -> bool:
        """Отвязать чат от пользователя (команда /unlink)."""
        try:
            user = self.find_user_by_chat(chat_id)
            if user is None:
                return False
            user.telegram_chat_id = None
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"❌ Не удалось отвязать чат: {e}")
            self.db.rollback()
            return False

    def find_user_by_chat(self, chat_id: int) -> Optional[User]:
        return self.db.scalar(select(User).where(User.telegram_chat_id == str(chat_id)))
