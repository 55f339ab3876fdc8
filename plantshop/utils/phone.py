"""
Модуль: utils/phone.py
Описание: Нормализация номеров телефонов
Проект: Plant Shop Backend

Единственное место, где номер приводится к виду +7XXXXXXXXXX.
Используется при регистрации, в боте, при проверке
верификации и при поиске пользователя по телефону.

Использование:
    from plantshop.utils.phone import normalize_phone
    normalize_phone("8 (999) 123-45-67")  # "+79991234567"
"""

import re
from typing import Optional


_NOT_PHONE_CHARS = re.compile(r"[^\d+]")


def normalize_phone(phone: Optional[str]) -> str:
    """
    Привести номер к каноническому виду.

    Правила (по порядку):
        1. Убираем всё, кроме цифр и "+"
        2. Ведущая 8 → +7
        3. Ведущая 7 без "+" → добавляем "+"
        4. 11 цифр, начинается с 7, без "+" → добавляем "+"
        5. 10 цифр без "+" → добавляем "+7"

    Длина номера не проверяется: мусор на входе даёт мусор на выходе.

    Параметры:
        phone: Номер в любом формате

    Возвращает:
        str: Нормализованный номер (пустая строка для пустого ввода)

    Пример:
        normalize_phone("89991234567")   # "+79991234567"
        normalize_phone("9991234567")    # "+79991234567"
        normalize_phone("+7 999 123 45 67")  # "+79991234567"
    """
    if not phone:
        return ""

    cleaned = _NOT_PHONE_CHARS.sub("", str(phone))

    if cleaned.startswith("8"):
        cleaned = "+7" + cleaned[1:]

    if cleaned.startswith("7") and not cleaned.startswith("+7"):
        cleaned = "+" + cleaned

    if len(cleaned) == 11 and cleaned.startswith("7") and "+" not in cleaned:
        cleaned = "+" + cleaned

    if len(cleaned) == 10 and "+" not in cleaned:
        cleaned = "+7" + cleaned

    return cleaned


def phones_match(first: Optional[str], second: Optional[str]) -> bool:
    """Совпадают ли два номера после нормализации (пустые не совпадают)."""
    a = normalize_phone(first)
    return bool(a) and a == normalize_phone(second)
