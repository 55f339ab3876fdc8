"""
Модуль: routers/settings.py
Описание: Настройки уведомлений администратора
Проект: Plant Shop Backend

Эндпоинты:
    GET  /api/settings/telegram       — Текущие настройки (админ)
    PUT  /api/settings/telegram       — Сохранить (админ)
    POST /api/settings/telegram/test  — Проверочное сообщение (админ)
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from plantshop.database import tables
from plantshop.database.connection import get_db
from plantshop.database.models import TelegramSettingsModel
from plantshop.services.notification_service import get_notification_service, load_admin_channel
from plantshop.utils.auth import require_admin


logger = logging.getLogger("plantshop.settings")


router = APIRouter(
    prefix="/api/settings",
    tags=["Настройки"]
)


@router.get("/telegram", response_model=TelegramSettingsModel, summary="Настройки Telegram")
async def get_telegram_settings(admin: tables.User = Depends(require_admin), db: Session = Depends(get_db)):
    row = db.scalar(select(tables.TelegramSettings).limit(1))
    if row is None:
        return TelegramSettingsModel()
    return row


@router.put("/telegram", response_model=TelegramSettingsModel, summary="Сохранить настройки Telegram")
async def update_telegram_settings(
    data: TelegramSettingsModel,
    admin: tables.User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    row = db.scalar(select(tables.TelegramSettings).limit(1))
    if row is None:
        row = tables.TelegramSettings()
        db.add(row)

    for field, value in data.model_dump().items():
        setattr(row, field, value)

    db.commit()
    db.refresh(row)
    logger.info(f"⚙️  Настройки Telegram обновлены (уведомления: {'вкл' if row.enable_notifications else 'выкл'})")
    return row


@router.post("/telegram/test", summary="Проверить уведомления")
async def test_telegram_settings(admin: tables.User = Depends(require_admin), db: Session = Depends(get_db)):
    sent = await get_notification_service().send_test(load_admin_channel(db))
    return {
        "success": sent,
        "message": "Сообщение отправлено" if sent else "Не удалось отправить сообщение, проверьте токен и chat_id",
    }
