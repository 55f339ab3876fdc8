"""
Модуль: utils/auth.py
Описание: Авторизация, JWT токены и хеширование паролей
Проект: Plant Shop Backend

Этот модуль содержит:
- Хеширование и проверку паролей (bcrypt)
- Создание и верификацию JWT токенов
- Dependencies для получения текущего пользователя и проверки админа

Как работает авторизация:
    1. Пользователь регистрируется (через бота) или входит по email/паролю
    2. Бэкенд выдаёт JWT токен
    3. Фронтенд передаёт токен в заголовке Authorization: Bearer <token>
    4. Права администратора перечитываются из БД на каждый запрос,
       в токене они не хранятся

Использование:
    from plantshop.utils.auth import get_current_user, require_admin

    @router.get("/profile")
    async def get_profile(user_id: int = Depends(get_current_user)):
        ...
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.orm import Session

from plantshop.config import settings
from plantshop.database.connection import get_db
from plantshop.database import tables


logger = logging.getLogger("plantshop.auth")


# ============================================================
# НАСТРОЙКИ
# ============================================================

# Схема авторизации через Bearer токен
# Ожидает заголовок: Authorization: Bearer <token>
security = HTTPBearer(
    scheme_name="JWT",
    description="JWT токен, полученный при входе или после подтверждения телефона",
    auto_error=False  # Не выбрасываем ошибку автоматически
)


# ============================================================
# ПАРОЛИ
# ============================================================

def _password_bytes(password: str) -> bytes:
    # bcrypt учитывает только первые 72 байта
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    """
    Захешировать пароль.

    Вызывается ровно один раз: при приёме заявки на регистрацию
    или при смене пароля.
    """
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Проверить пароль по хешу. Битый хеш = неверный пароль."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


# ============================================================
# МОДЕЛИ
# ============================================================

class TokenPayload(BaseModel):
    """
    Данные внутри JWT токена.

    Атрибуты:
        sub: Subject — ID пользователя (строка для совместимости)
        exp: Expiration — время истечения
        iat: Issued At — время создания
        type: Тип токена
    """
    sub: str
    exp: datetime
    iat: datetime
    type: str = "access"


class TokenResponse(BaseModel):
    """
    Ответ с токеном при авторизации.

    Атрибуты:
        access_token: JWT токен
        token_type: Тип токена (всегда "bearer")
        expires_in: Время жизни в секундах
    """
    access_token: str
    token_type: str = "bearer"
    expires_in: int


# ============================================================
# СОЗДАНИЕ ТОКЕНА
# ============================================================

def create_access_token(user_id: int, expires_delta: timedelta = None) -> str:
    """
    Создать JWT access токен.

    Параметры:
        user_id: ID пользователя в нашей БД
        expires_delta: Время жизни токена (опционально)

    Возвращает:
        str: JWT токен
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=settings.JWT_EXPIRE_HOURS))

    payload = {
        "sub": str(user_id),
        "exp": expire,
        "iat": now,
        "type": "access"
    }

    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_token_response(user_id: int) -> TokenResponse:
    """
    Создать полный ответ с токеном.

    Пример:
        response = create_token_response(42)
        # {"access_token": "eyJ...", "token_type": "bearer", "expires_in": 604800}
    """
    return TokenResponse(
        access_token=create_access_token(user_id),
        token_type="bearer",
        expires_in=settings.JWT_EXPIRE_HOURS * 3600
    )


# ============================================================
# ВЕРИФИКАЦИЯ ТОКЕНА
# ============================================================

def verify_token(token: str) -> Optional[TokenPayload]:
    """
    Проверить и декодировать JWT токен.

    Истёкший токен тоже считается невалидным (проверяет jose).

    Возвращает:
        TokenPayload | None: Данные токена или None если невалиден
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        logger.debug(f"JWT Error: {e}")
        return None

    if "sub" not in payload or "exp" not in payload:
        return None

    return TokenPayload(
        sub=payload["sub"],
        exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        iat=datetime.fromtimestamp(payload.get("iat", payload["exp"]), tz=timezone.utc),
        type=payload.get("type", "access")
    )


# ============================================================
# DEPENDENCIES ДЛЯ FASTAPI
# ============================================================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> int:
    """
    FastAPI Dependency: ID текущего пользователя из JWT.

    Исключения:
        HTTPException 401: Токен отсутствует, невалиден или истёк
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Требуется авторизация",
            headers={"WWW-Authenticate": "Bearer"}
        )

    payload = verify_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Невалидный или истёкший токен",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return int(payload.sub)


async def get_current_user_optional(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Optional[int]:
    """
    Опциональная версия get_current_user.

    Не выбрасывает ошибку если токен отсутствует или невалиден.
    """
    if credentials is None:
        return None

    payload = verify_token(credentials.credentials)
    return int(payload.sub) if payload else None


async def get_current_user_record(
    user_id: int = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> tables.User:
    """
    Текущий пользователь из БД.

    Исключения:
        HTTPException 401: Пользователь удалён
    """
    user = db.get(tables.User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Пользователь не найден",
            headers={"WWW-Authenticate": "Bearer"}
        )
    return user


async def require_admin(
    user: tables.User = Depends(get_current_user_record)
) -> tables.User:
    """
    Только для администраторов.

    Флаг is_admin читается из БД при каждом запросе, поэтому
    снятие прав действует сразу.

    Исключения:
        HTTPException 403: Пользователь не администратор
    """
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Доступ только для администраторов"
        )
    return user
