"""
Модуль: routers/auth.py
Описание: Регистрация с подтверждением телефона и вход
Проект: Plant Shop Backend

Эндпоинты:
    POST /api/auth/request-phone-verification — Заявка на регистрацию
    POST /api/auth/check-phone-verification   — Опрос: подтверждён ли телефон
    POST /api/auth/login                      — Вход по email и паролю
    GET  /api/auth/user                       — Текущий пользователь
    POST /api/auth/logout                     — Выход

Регистрация (наглядно):
    Сайт ──request-phone-verification──▶ {verification_token, bot_url}
    Пользователь ──▶ бот ──▶ делится контактом
    Сайт ──check-phone-verification (каждые 2-3 с)──▶ verified=false ... verified=true + token

Использование:
    from plantshop.routers.auth import router
    app.include_router(router)
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from plantshop.database import tables
from plantshop.database.connection import get_db
from plantshop.database.models import LoginRequest, RegistrationRequest, User, VerificationCheckRequest
from plantshop.services.registration import (
    LoginResult, RegistrationService, VerificationCheckResult, VerificationRequestResult
)
from plantshop.utils.auth import get_current_user_record


logger = logging.getLogger("plantshop.auth")


# ============================================================
# РОУТЕР
# ============================================================

router = APIRouter(
    prefix="/api/auth",
    tags=["Авторизация"]
)


# ============================================================
# РЕГИСТРАЦИЯ
# ============================================================

@router.post(
    "/request-phone-verification",
    response_model=VerificationRequestResult,
    summary="Заявка на регистрацию",
    description="""
    Сохраняет данные формы и возвращает ссылку на Telegram-бота.

    Аккаунт создаётся только после подтверждения телефона в боте.
    """
)
async def request_phone_verification(
    request: RegistrationRequest,
    db: Session = Depends(get_db)
):
    result = RegistrationService(db).request_verification(request)
    logger.info(f"📝 Заявка на регистрацию: {result.phone}")
    return result


@router.post(
    "/check-phone-verification",
    response_model=VerificationCheckResult,
    summary="Проверить подтверждение телефона",
    description="""
    Клиент вызывает периодически после выдачи ссылки на бота.

    verified=false — телефон ещё не подтверждён (обычный ответ 200).
    verified=true — аккаунт создан, в ответе JWT токен.
    """
)
async def check_phone_verification(
    request: VerificationCheckRequest,
    db: Session = Depends(get_db)
):
    return RegistrationService(db).check_verification(request.phone, request.verification_token)


# ============================================================
# ВХОД / ВЫХОД
# ============================================================

@router.post("/login", response_model=LoginResult, summary="Вход по email и паролю")
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    result = RegistrationService(db).authenticate(request.email, request.password)
    logger.info(f"🔑 Вход: #{result.user.id}")
    return result


@router.get("/user", response_model=User, summary="Текущий пользователь")
async def current_user(user: tables.User = Depends(get_current_user_record)):
    return User.from_row(user)


@router.post("/logout", status_code=status.HTTP_200_OK, summary="Выход")
async def logout():
    """
    Выход.

    JWT хранится на клиенте, сервер ничего не удаляет:
    клиент просто забывает токен.
    """
    return {"success": True}
