"""
Модуль: utils/exceptions.py
Описание: Исключения предметной области
Проект: Plant Shop Backend

Сервисы бросают эти исключения, а main.py превращает их
в JSON-ответ с нужным HTTP-кодом:
    {"error": true, "message": "...", "code": "..."}
"""

from typing import Optional


class ShopError(Exception):
    """Базовое исключение магазина."""
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(ShopError):
    """Некорректные входные данные."""
    status_code = 400
    code = "VALIDATION_ERROR"


class InsufficientFundsError(ShopError):
    """Недостаточно средств на балансе."""
    status_code = 400
    code = "INSUFFICIENT_FUNDS"


class PromoCodeError(ShopError):
    """Промокод не применим."""
    status_code = 400
    code = "PROMO_CODE_INVALID"


class AuthenticationError(ShopError):
    status_code = 401
    code = "NOT_AUTHENTICATED"


class PermissionDeniedError(ShopError):
    """Нет прав (не админ / не владелец)."""
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(ShopError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidStateTransition(ShopError):
    """Недопустимый переход состояния заказа."""
    status_code = 409
    code = "INVALID_ORDER_STATE"


class PaymentGatewayError(ShopError):
    """Платёжная система ответила ошибкой или подозрительным статусом."""
    status_code = 502
    code = "PAYMENT_SYSTEM_ERROR"


class PaymentServiceUnavailable(PaymentGatewayError):
    """
    Платёжная система недоступна.

    Клиент должен предложить другой способ оплаты,
    а не повторять запрос вслепую.
    """
    status_code = 503
    code = "PAYMENT_SERVICE_UNAVAILABLE"


class WebhookSignatureError(ShopError):
    status_code = 401
    code = "INVALID_SIGNATURE"
