"""
Модуль: utils/uploads.py
Описание: Сохранение загруженных изображений
Проект: Plant Shop Backend

Файлы кладутся в UPLOAD_DIR/<папка>/<uuid>.<расширение> и отдаются
приложением по адресу /uploads/... (см. main.py).
"""

import logging
import uuid
from pathlib import Path

from fastapi import UploadFile

from plantshop.config import settings
from plantshop.utils.exceptions import ValidationError


logger = logging.getLogger("plantshop.uploads")

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".heic"}
MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 МБ


async def save_image(file: UploadFile, folder: str) -> str:
    """
    Сохранить изображение.

    Параметры:
        file: Файл из multipart-запроса
        folder: Подпапка (payment-proofs, products, reviews)

    Возвращает:
        str: Публичный путь вида /uploads/payment-proofs/<uuid>.jpg

    Исключения:
        ValidationError: Не изображение, пустой или слишком большой файл
    """
    extension = Path(file.filename or "").suffix.lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise ValidationError("Можно загружать только изображения (jpg, png, webp, gif, heic)")

    content = await file.read()
    if not content:
        raise ValidationError("Файл пустой")
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationError("Файл больше 10 МБ")

    target_dir = Path(settings.UPLOAD_DIR) / folder
    target_dir.mkdir(parents=True, exist_ok=True)

    name = f"{uuid.uuid4().hex}{extension}"
    (target_dir / name).write_bytes(content)

    logger.info(f"📎 Файл сохранён: {folder}/{name} ({len(content)} байт)")
    return f"/uploads/{folder}/{name}"
