"""
Модуль: services/registration.py
Описание: Регистрация с подтверждением телефона через Telegram
Проект: Plant Shop Backend

Процесс регистрации:
    1. Сайт отправляет заявку → request_verification()
       Пароль хешируется сразу, заявка сохраняется, сайт получает
       токен и ссылку на бота
    2. Пользователь открывает бота и делится контактом
       (services/phone_verification.py помечает заявку подтверждённой)
    3. Сайт периодически опрашивает → check_verification()
       Пока телефон не подтверждён — ответ verified=False (это не ошибка).
       После подтверждения создаётся пользователь, заявка удаляется,
       сайт получает JWT токен

Создание пользователя из заявки атомарно: удаление подтверждённой
заявки и вставка пользователя идут в одной транзакции, поэтому два
параллельных опроса не создадут двух пользователей.

Использование:
    service = RegistrationService(db)
    result = service.request_verification(request)
    check = service.check_verification(phone, result.verification_token)
"""

import logging
import secrets
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from plantshop.config import settings
from plantshop.database.models import RegistrationRequest, User as UserModel
from plantshop.database.tables import PendingRegistration, User
from plantshop.services.pending_registrations import PendingRegistrationStore
from plantshop.utils.auth import TokenResponse, create_token_response, hash_password, verify_password
from plantshop.utils.exceptions import AuthenticationError, ShopError, ValidationError
from plantshop.utils.phone import normalize_phone


logger = logging.getLogger("plantshop.registration")


# ============================================================
# МОДЕЛИ РЕЗУЛЬТАТОВ
# ============================================================

class VerificationRequestResult(BaseModel):
    """Заявка принята, ждём подтверждения в боте."""
    success: bool = True
    message: str
    phone: str
    verification_token: str
    bot_url: str


class VerificationCheckResult(BaseModel):
    """
    Результат опроса check-phone-verification.

    verified=False без ошибки — телефон ещё не подтверждён,
    клиент продолжает опрос.
    """
    verified: bool
    message: str
    user: Optional[UserModel] = None
    token: Optional[TokenResponse] = None
    auto_login: bool = False
    already_registered: bool = False


class LoginResult(BaseModel):
    user: UserModel
    token: TokenResponse


def generate_verification_token() -> str:
    """Случайный непрозрачный токен для deep link."""
    return secrets.token_urlsafe(24)


def build_bot_url(token: str) -> str:
    """Ссылка на бота с токеном: https://t.me/<bot>?start=<token>"""
    return f"https://t.me/{settings.TELEGRAM_BOT_USERNAME}?start={token}"


# ============================================================
# СЕРВИС
# ============================================================

class RegistrationService:
    """Регистрация, вход и завершение подтверждения телефона."""

    def __init__(self, db: Session):
        self.db = db
        self.store = PendingRegistrationStore(db)

    # ------------------------------------------------------------
    # Поиск пользователей
    # ------------------------------------------------------------

    def _user_by_email(self, email: str) -> Optional[User]:
        return self.db.scalar(select(User).where(func.lower(User.email) == email.lower()))

    def _user_by_phone(self, phone: str) -> Optional[User]:
        return self.db.scalar(select(User).where(User.phone == normalize_phone(phone)))

    def _success(self, user: User, message: str) -> VerificationCheckResult:
        return VerificationCheckResult(
            verified=True,
            message=message,
            user=UserModel.from_row(user),
            token=create_token_response(user.id),
            auto_login=True
        )

    # ------------------------------------------------------------
    # Шаг 1: заявка
    # ------------------------------------------------------------

    def request_verification(self, request: RegistrationRequest) -> VerificationRequestResult:
        """
        Принять заявку на регистрацию.

        Параметры:
            request: Данные формы регистрации

        Возвращает:
            VerificationRequestResult: Токен и ссылка на бота

        Исключения:
            ValidationError: Email или телефон уже зарегистрированы
            ShopError: Заявку не удалось сохранить
        """
        phone = normalize_phone(request.phone)
        if not phone:
            raise ValidationError("Укажите номер телефона")

        email = request.email.lower()

        if self._user_by_email(email):
            raise ValidationError("Пользователь с таким email уже зарегистрирован")

        if self._user_by_phone(phone):
            raise ValidationError("Этот номер телефона уже зарегистрирован, войдите по email и паролю")

        token = request.verification_token or generate_verification_token()

        user_data = {
            "email": email,
            "password_hash": hash_password(request.password),
            "full_name": request.full_name,
            "username": request.username,
            "address": request.address,
        }

        if not self.store.save(phone, user_data, token):
            raise ShopError("Не удалось сохранить данные для подтверждения телефона")

        return VerificationRequestResult(
            message="Данные сохранены, подтвердите телефон в Telegram-боте",
            phone=phone,
            verification_token=token,
            bot_url=build_bot_url(token)
        )

    # ------------------------------------------------------------
    # Шаг 3: опрос и создание пользователя
    # ------------------------------------------------------------

    def check_verification(self, phone: str, token: str) -> VerificationCheckResult:
        """
        Проверить подтверждение и при необходимости создать пользователя.

        Повторный вызов после успешного создания снова логинит
        того же пользователя (по токену заявки).

        Параметры:
            phone: Телефон из формы регистрации
            token: Токен заявки

        Возвращает:
            VerificationCheckResult
        """
        phone = normalize_phone(phone)
        if not phone or not token:
            raise ValidationError("Отсутствуют обязательные поля: phone, verification_token")

        # 1. Пользователь уже создан (повторный опрос)
        existing = self._user_by_phone(phone)
        if existing is not None:
            if existing.verification_token == token:
                return self._success(existing, "Добро пожаловать!")
            return VerificationCheckResult(
                verified=False,
                message="Этот номер уже зарегистрирован, войдите по email и паролю",
                already_registered=True
            )

        # 2. Телефон ещё не подтверждён
        if not self.store.check_verified(phone, token):
            return VerificationCheckResult(verified=False, message="Телефон не подтверждён")

        # 3. Подтверждён: создаём пользователя
        record = self.store.get_record(phone, token)
        if record is None or not record.verified:
            # Заявку параллельно забрал другой опрос
            return self._resolve_finished(phone, token)

        data = dict(record.user_data)
        chat_id = record.telegram_chat_id

        by_email = self._user_by_email(data["email"])
        if by_email is not None:
            self.store.remove(phone, token)
            if by_email.verification_token == token:
                return self._success(by_email, "Добро пожаловать!")
            raise ValidationError("Пользователь с таким email уже зарегистрирован")

        return self._create_user_from_pending(phone, token, data, chat_id)

    def _create_user_from_pending(
        self,
        phone: str,
        token: str,
        data: dict,
        chat_id: Optional[str]
    ) -> VerificationCheckResult:
        """
        Атомарно: удалить подтверждённую заявку и создать пользователя.

        Если заявку уже удалил параллельный запрос (rowcount == 0),
        пользователя не создаём и отдаём результат того запроса.
        """
        try:
            claimed = self.db.execute(
                delete(PendingRegistration).where(
                    PendingRegistration.phone == phone,
                    PendingRegistration.verification_token == token,
                    PendingRegistration.verified.is_(True)
                )
            )
            if claimed.rowcount != 1:
                self.db.rollback()
                return self._resolve_finished(phone, token)

            user = User(
                email=data["email"],
                password_hash=data["password_hash"],
                username=data.get("username"),
                full_name=data.get("full_name"),
                address=data.get("address"),
                phone=phone,
                is_admin=False,
                balance=0,
                telegram_chat_id=chat_id,
                verification_token=token
            )
            self.db.add(user)
            self.db.commit()
        except IntegrityError:
            # Email занят: параллельный запрос успел раньше
            self.db.rollback()
            logger.warning(f"⚠️  Пользователь для {phone} создан параллельным запросом")
            return self._resolve_finished(phone, token)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Ошибка создания пользователя: {e}")
            raise ShopError("Ошибка при создании пользователя")

        self.db.refresh(user)
        logger.info(f"🎉 Регистрация завершена: #{user.id} {user.email}")
        return self._success(user, "Регистрация завершена успешно!")

    def _resolve_finished(self, phone: str, token: str) -> VerificationCheckResult:
        """Регистрацию завершил другой запрос: логиним созданного им пользователя."""
        user = self.db.scalar(select(User).where(User.verification_token == token))
        if user is not None and user.phone == phone:
            return self._success(user, "Добро пожаловать!")
        return VerificationCheckResult(verified=False, message="Телефон не подтверждён")

    # ============================================================
    # ВХОД
    # ============================================================

    def authenticate(self, email: str, password: str) -> LoginResult:
        """
        Вход по email и паролю.

        Исключения:
            AuthenticationError: Неверный email или пароль
        """
        user = self._user_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            raise AuthenticationError("Неверный email или пароль")

        return LoginResult(user=UserModel.from_row(user), token=create_token_response(user.id))

    def ensure_admin(self, email: str, password: str) -> Optional[User]:
        """
        Создать администратора при первом запуске (ADMIN_EMAIL / ADMIN_PASSWORD).

        Существующему пользователю с этим email выдаются права админа,
        пароль не меняется.
        """
        if not email or not password:
            return None

        user = self._user_by_email(email)
        if user is None:
            user = User(
                email=email.lower(),
                password_hash=hash_password(password),
                username="admin",
                is_admin=True,
                balance=0
            )
            self.db.add(user)
            logger.info(f"👑 Создан администратор {email}")
        elif not user.is_admin:
            user.is_admin = True
            logger.info(f"👑 Пользователю {email} выданы права администратора")

        self.db.commit()
        return user
