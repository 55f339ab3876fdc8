"""
Модуль: routers/balance.py
Описание: Баланс пользователя
Проект: Plant Shop Backend

Эндпоинты:
    POST /api/balance/topup                  — Пополнить через Ozon Pay
    GET  /api/balance/history                — История пополнений
    POST /api/balance/admin/{user_id}/add    — Начислить вручную (админ)
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from plantshop.database import tables
from plantshop.database.connection import get_db
from plantshop.database.models import AdminBalanceRequest, BalanceTopup, TopupRequest, User
from plantshop.services.balance_service import BalanceService
from plantshop.utils.auth import get_current_user_record, require_admin


router = APIRouter(
    prefix="/api/balance",
    tags=["Баланс"]
)


@router.post("/topup", summary="Пополнить баланс")
async def create_topup(
    request: TopupRequest,
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    """
    Создать пополнение и вернуть ссылку на оплату.

    Баланс увеличится, когда Ozon Pay пришлёт webhook об оплате.
    """
    topup, payment = await BalanceService(db).create_topup(user, request.amount)
    return {
        "success": True,
        "topup_id": topup.id,
        "payment_url": payment.payment_url,
        "payment_id": payment.payment_id,
    }


@router.get("/history", response_model=List[BalanceTopup], summary="История пополнений")
async def topup_history(
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    return BalanceService(db).history(user.id)


@router.post("/admin/{user_id}/add", response_model=User, summary="Начислить на баланс (админ)")
async def admin_add_balance(
    user_id: int,
    request: AdminBalanceRequest,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    user = await BalanceService(db).admin_add_balance(user_id, request.amount)
    return User.from_row(user)
