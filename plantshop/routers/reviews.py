"""
Модуль: routers/reviews.py
Описание: Отзывы покупателей
Проект: Plant Shop Backend

Эндпоинты:
    GET    /api/reviews              — Одобренные отзывы (админ видит все)
    POST   /api/reviews              — Оставить отзыв (уходит на модерацию)
    PUT    /api/reviews/{id}/approve — Одобрить (админ)
    DELETE /api/reviews/{id}         — Удалить (автор или админ)
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from plantshop.database import tables
from plantshop.database.connection import get_db
from plantshop.database.models import Review, ReviewCreate
from plantshop.utils.auth import get_current_user_optional, get_current_user_record, require_admin


router = APIRouter(
    prefix="/api/reviews",
    tags=["Отзывы"]
)


def _get_review(db: Session, review_id: int) -> tables.Review:
    review = db.get(tables.Review, review_id)
    if review is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Отзыв не найден")
    return review


@router.get("", response_model=List[Review], summary="Отзывы")
async def list_reviews(
    product_id: Optional[int] = Query(None),
    user_id: Optional[int] = Depends(get_current_user_optional),
    db: Session = Depends(get_db)
):
    query = select(tables.Review)

    viewer = db.get(tables.User, user_id) if user_id else None
    if viewer is None or not viewer.is_admin:
        query = query.where(tables.Review.is_approved.is_(True))

    if product_id is not None:
        query = query.where(tables.Review.product_id == product_id)

    return list(db.scalars(query.order_by(tables.Review.created_at.desc(), tables.Review.id.desc())))


@router.post("", response_model=Review, status_code=status.HTTP_201_CREATED, summary="Оставить отзыв")
async def create_review(
    data: ReviewCreate,
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    review = tables.Review(user_id=user.id, is_approved=False, **data.model_dump())
    db.add(review)
    db.commit()
    db.refresh(review)
    return review


@router.put("/{review_id}/approve", response_model=Review, summary="Одобрить отзыв (админ)")
async def approve_review(
    review_id: int,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    review = _get_review(db, review_id)
    review.is_approved = True
    db.commit()
    db.refresh(review)
    return review


@router.delete("/{review_id}", summary="Удалить отзыв")
async def delete_review(
    review_id: int,
    user: tables.User = Depends(get_current_user_record),
    db: Session = Depends(get_db)
):
    review = _get_review(db, review_id)
    if review.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Можно удалить только свой отзыв")

    db.delete(review)
    db.commit()
    return {"success": True}
