"""
Модуль: routers/payments.py
Описание: Webhook Ozon Pay и реквизиты для перевода
Проект: Plant Shop Backend

Эндпоинты:
    POST /api/payments/ozonpay/webhook — Уведомление Ozon Pay о статусе оплаты
    GET  /api/payments/details         — Реквизиты для прямого перевода
    PUT  /api/payments/details         — Изменить реквизиты (админ)

Webhook (наглядно):
    Ozon Pay ──POST {orderID, extOrderID, status, requestSign, ...}──▶ мы
        подпись не совпала            → 401
        extOrderID = "balance_..."    → пополнение баланса
        иначе                         → заказ по ozonpay_payment_id

Использование:
    from plantshop.routers.payments import router
    app.include_router(router)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from plantshop.database import tables
from plantshop.database.connection import get_db
from plantshop.database.models import PaymentDetailsModel
from plantshop.services.order_service import OrderService
from plantshop.utils.auth import require_admin


logger = logging.getLogger("plantshop.payments")


router = APIRouter(
    prefix="/api/payments",
    tags=["Платежи"]
)


# ============================================================
# WEBHOOK OZON PAY
# ============================================================

@router.post(
    "/ozonpay/webhook",
    summary="Webhook Ozon Pay",
    description="""
    Ozon Pay вызывает этот эндпоинт при смене статуса оплаты.

    Подпись requestSign проверяется, повторные уведомления безопасны:
    остатки списываются и баланс пополняется ровно один раз.
    """
)
async def ozonpay_webhook(request: Request, db: Session = Depends(get_db)):
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Некорректный JSON")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Ожидается JSON-объект")

    return await OrderService(db).handle_gateway_webhook(payload)


# ============================================================
# РЕКВИЗИТЫ
# ============================================================

@router.get("/details", response_model=PaymentDetailsModel, summary="Реквизиты для перевода")
async def get_payment_details(db: Session = Depends(get_db)):
    row = db.scalar(select(tables.PaymentDetails).limit(1))
    if row is None:
        return PaymentDetailsModel()
    return row


@router.put("/details", response_model=PaymentDetailsModel, summary="Изменить реквизиты (админ)")
async def update_payment_details(
    data: PaymentDetailsModel,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    row = db.scalar(select(tables.PaymentDetails).limit(1))
    if row is None:
        row = tables.PaymentDetails()
        db.add(row)

    for field, value in data.model_dump().items():
        setattr(row, field, value)

    db.commit()
    db.refresh(row)
    logger.info(f"🏦 Реквизиты обновлены администратором #{admin.id}")
    return row
