"""
Модуль: routers/promo_codes.py
Описание: Промокоды
Проект: Plant Shop Backend

Эндпоинты:
    POST   /api/promo-codes/validate — Проверить промокод для корзины
    GET    /api/promo-codes          — Список (админ)
    POST   /api/promo-codes          — Создать (админ)
    PUT    /api/promo-codes/{id}     — Изменить (админ)
    DELETE /api/promo-codes/{id}     — Удалить (админ)
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from plantshop.database import tables
from plantshop.database.connection import get_db
from plantshop.database.models import (
    PromoCode, PromoCodeCreate, PromoCodeUpdate, PromoValidateRequest, PromoValidation
)
from plantshop.services.promo_codes import PromoCodeService
from plantshop.utils.auth import get_current_user_optional, require_admin


router = APIRouter(
    prefix="/api/promo-codes",
    tags=["Промокоды"]
)


@router.post("/validate", response_model=PromoValidation, summary="Проверить промокод")
async def validate_promo_code(
    request: PromoValidateRequest,
    user_id: Optional[int] = Depends(get_current_user_optional),
    db: Session = Depends(get_db)
):
    """
    Скидка для суммы товаров в корзине.

    Для авторизованного пользователя дополнительно проверяется,
    что он ещё не использовал этот промокод.
    """
    return PromoCodeService(db).validate(request.code, request.cart_total, user_id)


@router.get("", response_model=List[PromoCode], summary="Все промокоды (админ)")
async def list_promo_codes(admin: tables.User = Depends(require_admin), db: Session = Depends(get_db)):
    return PromoCodeService(db).list_all()


@router.post("", response_model=PromoCode, status_code=status.HTTP_201_CREATED, summary="Создать промокод")
async def create_promo_code(
    data: PromoCodeCreate,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return PromoCodeService(db).create(data)


@router.put("/{promo_id}", response_model=PromoCode, summary="Изменить промокод")
async def update_promo_code(
    promo_id: int,
    data: PromoCodeUpdate,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return PromoCodeService(db).update(promo_id, data)


@router.delete("/{promo_id}", summary="Удалить промокод")
async def delete_promo_code(
    promo_id: int,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    PromoCodeService(db).delete(promo_id)
    return {"success": True}
