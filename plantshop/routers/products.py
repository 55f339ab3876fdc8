"""
Модуль: routers/products.py
Описание: Каталог растений
Проект: Plant Shop Backend

Эндпоинты:
    GET    /api/products          — Каталог с фильтрами
    GET    /api/products/{id}     — Карточка растения
    POST   /api/products          — Добавить (админ, рассылка о новинке)
    PUT    /api/products/{id}     — Изменить (админ)
    DELETE /api/products/{id}     — Удалить (админ)
    POST   /api/products/upload   — Загрузить фото (админ)

Использование:
    from plantshop.routers.products import router
    app.include_router(router)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from plantshop.database import tables
from plantshop.database.connection import get_db
from plantshop.database.models import Product, ProductCreate, ProductUpdate
from plantshop.services.notification_service import get_notification_service
from plantshop.utils.auth import require_admin
from plantshop.utils.uploads import save_image


logger = logging.getLogger("plantshop.products")


router = APIRouter(
    prefix="/api/products",
    tags=["Товары"]
)


def _get_product(db: Session, product_id: int) -> tables.Product:
    product = db.get(tables.Product, product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Товар не найден")
    return product


# ============================================================
# КАТАЛОГ
# ============================================================

@router.get("", response_model=List[Product], summary="Каталог")
async def list_products(
    category: Optional[str] = Query(None, description="Категория"),
    search: Optional[str] = Query(None, description="Поиск по названию и описанию"),
    in_stock: Optional[bool] = Query(None, description="Только в наличии"),
    is_available: Optional[bool] = None,
    is_preorder: Optional[bool] = None,
    is_rare: Optional[bool] = None,
    is_easy_to_care: Optional[bool] = None,
    is_pet_safe: Optional[bool] = None,
    is_air_purifying: Optional[bool] = None,
    is_hot_deal: Optional[bool] = None,
    is_bestseller: Optional[bool] = None,
    is_discounted: Optional[bool] = None,
    db: Session = Depends(get_db)
):
    query = select(tables.Product)

    if category:
        query = query.where(tables.Product.category == category)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(
            tables.Product.name.ilike(pattern),
            tables.Product.description.ilike(pattern)
        ))

    if in_stock:
        query = query.where(tables.Product.quantity > 0)

    flags = {
        "is_available": is_available, "is_preorder": is_preorder, "is_rare": is_rare,
        "is_easy_to_care": is_easy_to_care, "is_pet_safe": is_pet_safe,
        "is_air_purifying": is_air_purifying, "is_hot_deal": is_hot_deal,
        "is_bestseller": is_bestseller, "is_discounted": is_discounted,
    }
    for flag, value in flags.items():
        if value is not None:
            query = query.where(getattr(tables.Product, flag).is_(value))

    return list(db.scalars(query.order_by(tables.Product.created_at.desc(), tables.Product.id.desc())))


@router.get("/{product_id}", response_model=Product, summary="Карточка растения")
async def get_product(product_id: int, db: Session = Depends(get_db)):
    return _get_product(db, product_id)


# ============================================================
# АДМИНКА
# ============================================================

@router.post("", response_model=Product, status_code=status.HTTP_201_CREATED, summary="Добавить растение")
async def create_product(
    data: ProductCreate,
    background_tasks: BackgroundTasks,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Новое растение + рассылка всем, кто привязал Telegram."""
    product = tables.Product(**data.model_dump())
    db.add(product)
    db.commit()
    db.refresh(product)
    logger.info(f"🌱 Добавлено растение #{product.id} «{product.name}»")

    chat_ids = list(db.scalars(
        select(tables.User.telegram_chat_id).where(tables.User.telegram_chat_id.is_not(None))
    ))
    if chat_ids:
        background_tasks.add_task(get_notification_service().broadcast_new_product, chat_ids, Product.model_validate(product))

    return product


@router.put("/{product_id}", response_model=Product, summary="Изменить растение")
async def update_product(
    product_id: int,
    data: ProductUpdate,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    product = _get_product(db, product_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(product, field, value)
    db.commit()
    db.refresh(product)
    return product


@router.delete("/{product_id}", summary="Удалить растение")
async def delete_product(
    product_id: int,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    product = _get_product(db, product_id)
    db.delete(product)
    db.commit()
    logger.info(f"🗑  Растение #{product_id} удалено")
    return {"success": True}


@router.post("/upload", summary="Загрузить фото растения")
async def upload_image(
    file: UploadFile = File(...),
    admin: tables.User = Depends(require_admin)
):
    return {"url": await save_image(file, "products")}
