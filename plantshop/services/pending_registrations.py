"""
Модуль: services/pending_registrations.py
Описание: Хранилище неподтверждённых регистраций
Проект: Plant Shop Backend

Пока пользователь не подтвердил телефон в Telegram-боте, его данные
лежат в таблице pending_registrations, а не в users.

Жизненный цикл записи:
    save()          — заявка на регистрацию (старая заявка на тот же номер удаляется)
    mark_verified() — бот подтвердил телефон
    get_data()      — финишер регистрации забирает данные
    remove()        — запись удаляется после создания пользователя
    cleanup_expired() — неподтверждённые записи старше TTL удаляются

Все операции "мягкие": ошибка БД логируется и превращается в
False / None. Для вызывающего кода "не найдено" и "ошибка" — одно и то же.

Использование:
    store = PendingRegistrationStore(db)
    store.save("89991234567", {"email": "a@b.com", ...}, token)
    store.check_verified("+79991234567", token)  # False
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from plantshop.config import settings
from plantshop.database.tables import PendingRegistration, utcnow
from plantshop.utils.phone import normalize_phone


logger = logging.getLogger("plantshop.registration")


class PendingRegistrationStore:
    """
    Хранилище pending-регистраций поверх сессии SQLAlchemy.

    Каждая изменяющая операция сама делает commit.
    """

    def __init__(self, db: Session, ttl_hours: Optional[int] = None):
        self.db = db
        self.ttl = timedelta(hours=ttl_hours or settings.PENDING_REGISTRATION_TTL_HOURS)

    def _expires_before(self):
        return utcnow() - self.ttl

    def _fail(self, operation: str, error: Exception) -> None:
        logger.error(f"❌ pending_registrations.{operation}: {error}")
        self.db.rollback()

    def _active(self, phone: str, token: str) -> Optional[PendingRegistration]:
        """Неистёкшая запись по паре (телефон, токен)."""
        return self.db.scalar(
            select(PendingRegistration).where(
                PendingRegistration.phone == normalize_phone(phone),
                PendingRegistration.verification_token == token,
                PendingRegistration.created_at >= self._expires_before()
            )
        )

    # ============================================================
    # ЗАПИСЬ
    # ============================================================

    def save(self, phone: str, user_data: dict, token: str) -> bool:
        """
        Сохранить заявку на регистрацию.

        Предыдущая заявка на этот же номер удаляется (побеждает последняя).

        Параметры:
            phone: Телефон в любом формате
            user_data: Данные пользователя (пароль уже захеширован!)
            token: Токен верификации

        Возвращает:
            bool: Удалось ли сохранить
        """
        normalized = normalize_phone(phone)
        try:
            self.db.execute(delete(PendingRegistration).where(PendingRegistration.phone == normalized))
            self.db.add(PendingRegistration(
                phone=normalized,
                user_data=user_data,
                verification_token=token,
                verified=False
            ))
            self.db.commit()
            logger.info(f"📝 Заявка на регистрацию сохранена: {normalized}")
            return True
        except SQLAlchemyError as e:
            self._fail("save", e)
            return False

    def mark_verified(self, phone: str, token: str, chat_id: Optional[str] = None) -> bool:
        """
        Отметить телефон подтверждённым.

        Только точное совпадение пары (телефон, токен): подтвердить
        заявку на другой номер по одному токену нельзя.

        Параметры:
            phone: Ожидаемый телефон заявки
            token: Токен верификации
            chat_id: Чат Telegram, из которого пришло подтверждение

        Возвращает:
            bool: True если запись найдена и отмечена
        """
        values = {"verified": True}
        if chat_id is not None:
            values["telegram_chat_id"] = str(chat_id)

        try:
            result = self.db.execute(
                update(PendingRegistration)
                .where(
                    PendingRegistration.phone == normalize_phone(phone),
                    PendingRegistration.verification_token == token,
                    PendingRegistration.created_at >= self._expires_before()
                )
                .values(**values)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self._fail("mark_verified", e)
            return False

        if result.rowcount:
            logger.info(f"✅ Телефон подтверждён: {normalize_phone(phone)}")
            return True

        logger.warning(f"⚠️  Заявка для подтверждения не найдена: {normalize_phone(phone)}")
        return False

    def remove(self, phone: str, token: str) -> bool:
        """Удалить заявку. Повторный вызов безопасен."""
        try:
            self.db.execute(
                delete(PendingRegistration).where(
                    PendingRegistration.phone == normalize_phone(phone),
                    PendingRegistration.verification_token == token
                )
            )
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            self._fail("remove", e)
            return False

    def cleanup_expired(self) -> int:
        """
        Удалить заявки старше TTL.

        Возвращает:
            int: Сколько записей удалено
        """
        try:
            result = self.db.execute(
                delete(PendingRegistration).where(
                    PendingRegistration.created_at < self._expires_before()
                )
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self._fail("cleanup_expired", e)
            return 0

        if result.rowcount:
            logger.info(f"🧹 Удалено просроченных заявок: {result.rowcount}")
        return result.rowcount or 0

    # ============================================================
    # ЧТЕНИЕ
    # ============================================================

    def check_verified(self, phone: str, token: str) -> bool:
        """Подтверждён ли телефон для пары (телефон, токен)."""
        try:
            record = self._active(phone, token)
        except SQLAlchemyError as e:
            self._fail("check_verified", e)
            return False
        return bool(record and record.verified)

    def get_data(self, phone: str, token: str) -> Optional[dict]:
        """
        Данные заявки, только если телефон подтверждён.

        Возвращает:
            dict | None: user_data или None
        """
        try:
            record = self._active(phone, token)
        except SQLAlchemyError as e:
            self._fail("get_data", e)
            return None

        if record is None or not record.verified:
            return None
        return dict(record.user_data)

    def get_record(self, phone: str, token: str) -> Optional[PendingRegistration]:
        """Неистёкшая запись целиком (нужна финишеру ради chat_id)."""
        try:
            return self._active(phone, token)
        except SQLAlchemyError as e:
            self._fail("get_record", e)
            return None

    def find_by_token(self, token: str) -> Optional[PendingRegistration]:
        """
        Найти заявку по токену из deep link бота.

        Возвращает:
            PendingRegistration | None
        """
        if not token:
            return None
        try:
            return self.db.scalar(
                select(PendingRegistration)
                .where(
                    PendingRegistration.verification_token == token,
                    PendingRegistration.created_at >= self._expires_before()
                )
                .order_by(PendingRegistration.created_at.desc())
                .limit(1)
            )
        except SQLAlchemyError as e:
            self._fail("find_by_token", e)
            return None

    def get_token_by_phone(self, phone: str) -> Optional[str]:
        """Токен последней неподтверждённой заявки на номер."""
        try:
            record = self.db.scalar(
                select(PendingRegistration)
                .where(
                    PendingRegistration.phone == normalize_phone(phone),
                    PendingRegistration.verified.is_(False),
                    PendingRegistration.created_at >= self._expires_before()
                )
                .order_by(PendingRegistration.created_at.desc())
                .limit(1)
            )
        except SQLAlchemyError as e:
            self._fail("get_token_by_phone", e)
            return None
        return record.verification_token if record else None
