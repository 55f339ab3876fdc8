"""
Модуль: routers/users.py
Описание: Профиль пользователя и управление пользователями
Проект: Plant Shop Backend

Эндпоинты:
    GET    /api/users               — Все пользователи (админ)
    PUT    /api/users/profile       — Обновить свой профиль
    PUT    /api/users/password      — Сменить пароль
    DELETE /api/users/me            — Удалить аккаунт (вместе с заказами и отзывами)
    PUT    /api/users/{id}/admin    — Выдать / снять права админа (админ)
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from plantshop.database import tables
from plantshop.database.connection import get_db
from plantshop.database.models import PasswordChange, User, UserUpdate
from plantshop.utils.auth import get_current_user_record, hash_password, require_admin, verify_password


logger = logging.getLogger("plantshop.users")


router = APIRouter(
    prefix="/api/users",
    tags=["Пользователи"]
)


class AdminToggleRequest(BaseModel):
    is_admin: bool


@router.get("", response_model=List[User], summary="Все пользователи (админ)")
async def list_users(admin: tables.User = Depends(require_admin), db: Session = Depends(get_db)):
    users = db.scalars(select(tables.User).order_by(tables.User.created_at.desc(), tables.User.id.desc()))
    return [User.from_row(u) for u in users]


@router.put("/profile", response_model=User, summary="Обновить профиль")
async def update_profile(
    data: UserUpdate,
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return User.from_row(user)


@router.put("/password", summary="Сменить пароль")
async def change_password(
    data: PasswordChange,
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    if not verify_password(data.current_password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Неверный текущий пароль")

    user.password_hash = hash_password(data.new_password)
    db.commit()
    logger.info(f"🔐 Пользователь #{user.id} сменил пароль")
    return {"success": True}


@router.delete("/me", summary="Удалить аккаунт")
async def delete_account(
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    """Удаляет аккаунт вместе с заказами, отзывами и историей баланса."""
    user_id = user.id
    db.delete(user)
    db.commit()
    logger.info(f"🗑  Аккаунт #{user_id} удалён")
    return {"success": True}


@router.put("/{user_id}/admin", response_model=User, summary="Права администратора")
async def toggle_admin(
    user_id: int,
    data: AdminToggleRequest,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    if user_id == admin.id and not data.is_admin:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Нельзя снять права с самого себя")

    user = db.get(tables.User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Пользователь не найден")

    user.is_admin = data.is_admin
    db.commit()
    db.refresh(user)
    logger.info(f"👑 Админ #{admin.id}: is_admin={data.is_admin} для #{user_id}")
    return User.from_row(user)
