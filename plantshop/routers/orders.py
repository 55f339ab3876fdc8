"""
Модуль: routers/orders.py
Описание: API эндпоинты для работы с заказами
Проект: Plant Shop Backend

Эндпоинты:
    POST   /api/orders                      — Оформить заказ
    GET    /api/orders                      — Мои заказы
    GET    /api/orders/all                  — Все заказы (админ)
    GET    /api/orders/{id}                 — Детали заказа
    PUT    /api/orders/{id}                 — Обновить заказ (админ)
    PUT    /api/orders/{id}/status          — Сменить статус (админ)
    DELETE /api/orders/{id}                 — Удалить заказ (админ)
    POST   /api/orders/{id}/payment-proof   — Загрузить скриншот оплаты
    POST   /api/orders/{id}/complete        — Отправить оплату на проверку
    POST   /api/orders/{id}/retry-payment   — Новая ссылка на оплату Ozon Pay
    POST   /api/orders/{id}/apply-promo     — Применить промокод к заказу

Вся логика в services/order_service.py, здесь только HTTP.

Использование:
    from plantshop.routers.orders import router
    app.include_router(router)
"""

from typing import List

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.orm import Session

from plantshop.database import tables
from plantshop.database.connection import get_db
from plantshop.database.models import (
    AdminOrderUpdate, ApplyPromoRequest, CreateOrderRequest,
    CreateOrderResponse, Order, OrderStatusUpdate
)
from plantshop.services.order_service import OrderService, order_to_model
from plantshop.utils.auth import get_current_user_record, require_admin
from plantshop.utils.uploads import save_image


# ============================================================
# РОУТЕР
# ============================================================

router = APIRouter(
    prefix="/api/orders",
    tags=["Заказы"]
)


# ============================================================
# ОФОРМЛЕНИЕ И ПРОСМОТР
# ============================================================

@router.post(
    "",
    response_model=CreateOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Оформить заказ",
    description="""
    Создать заказ.

    **Способы оплаты:**
    - balance — списание с баланса, заказ сразу оплачен
    - directTransfer — перевод по реквизитам, затем скриншот
    - ozonpay — в ответе payment_url для оплаты

    Если Ozon Pay не ответил, заказ всё равно сохраняется, а в ответе
    приходят payment_error и payment_error_code. Оплату можно повторить
    через /retry-payment.
    """
)
async def create_order(
    request: CreateOrderRequest,
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    return await OrderService(db).create_order(user, request)


@router.get("", response_model=List[Order], summary="Мои заказы")
async def my_orders(
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    return [order_to_model(o) for o in OrderService(db).list_for_user(user.id)]


@router.get("/all", response_model=List[Order], summary="Все заказы (админ)")
async def all_orders(
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return [order_to_model(o) for o in OrderService(db).list_all()]


@router.get("/{order_id}", response_model=Order, summary="Детали заказа")
async def get_order(
    order_id: int,
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    return order_to_model(OrderService(db).get_for_user(order_id, user))


# ============================================================
# ДЕЙСТВИЯ ПОКУПАТЕЛЯ
# ============================================================

@router.post("/{order_id}/payment-proof", response_model=Order, summary="Загрузить скриншот оплаты")
async def upload_payment_proof(
    order_id: int,
    file: UploadFile = File(...),
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    service = OrderService(db)
    # Доступ проверяем до сохранения файла
    service.get_for_user(order_id, user)
    url = await save_image(file, "payment-proofs")
    return order_to_model(await service.attach_payment_proof(order_id, user, url))


@router.post("/{order_id}/complete", response_model=Order, summary="Отправить оплату на проверку")
async def submit_for_verification(
    order_id: int,
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    return order_to_model(await OrderService(db).submit_for_verification(order_id, user))


@router.post("/{order_id}/retry-payment", summary="Повторить онлайн-оплату")
async def retry_payment(
    order_id: int,
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    payment = await OrderService(db).retry_payment(order_id, user)
    return {"success": True, "payment_url": payment.payment_url, "payment_id": payment.payment_id}


@router.post("/{order_id}/apply-promo", response_model=Order, summary="Применить промокод")
async def apply_promo(
    order_id: int,
    request: ApplyPromoRequest,
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    return order_to_model(OrderService(db).apply_promo(order_id, user, request.promo_code))


# ============================================================
# АДМИНКА
# ============================================================

@router.put("/{order_id}", response_model=Order, summary="Обновить заказ (админ)")
async def admin_update_order(
    order_id: int,
    data: AdminOrderUpdate,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return order_to_model(await OrderService(db).admin_update(order_id, data))


@router.put("/{order_id}/status", response_model=Order, summary="Сменить статус (админ)")
async def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return order_to_model(await OrderService(db).update_status(order_id, data.status))


@router.delete("/{order_id}", summary="Удалить заказ (админ)")
async def delete_order(
    order_id: int,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    OrderService(db).delete_order(order_id)
    return {"success": True}
