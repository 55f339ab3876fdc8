"""
Модуль: database/models.py
Описание: Pydantic-модели данных и перечисления
Проект: Plant Shop Backend

Этот файл содержит:
    1. Enum-ы (перечисления) для статусов
    2. Модели запросов и ответов API для каждой сущности

Структура именования:
    - ProductCreate — для создания записи
    - ProductUpdate — для обновления (все поля опциональны)
    - Product — полная модель (ответ API)

Таблицы БД описаны отдельно в database/tables.py.

Использование:
    from plantshop.database.models import CreateOrderRequest, PaymentMethod

    if request.payment_method == PaymentMethod.BALANCE:
        print("Оплата с баланса")
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


# ============================================================
# ПЕРЕЧИСЛЕНИЯ (ENUM)
# ============================================================

class OrderStatus(str, Enum):
    """
    Статусы заказа (колонка order_status).

    Жизненный цикл:
    PENDING → PROCESSING → SHIPPED → COMPLETED

    Или: любой незавершённый статус → CANCELLED
    """
    PENDING = "pending"        # Ожидает оплаты / проверки
    PROCESSING = "processing"  # Оплачен, собирается
    SHIPPED = "shipped"        # Отправлен
    COMPLETED = "completed"    # Получен
    CANCELLED = "cancelled"    # Отменён


class PaymentStatus(str, Enum):
    """
    Статусы платежа (колонка payment_status).

    PENDING → COMPLETED
            → FAILED
            → PENDING_VERIFICATION → VERIFICATION → COMPLETED
    """
    PENDING = "pending"                            # Ожидает оплаты
    PENDING_VERIFICATION = "pending_verification"  # Загружен скриншот оплаты
    VERIFICATION = "verification"                  # Отправлен на проверку
    COMPLETED = "completed"                        # Оплачен
    FAILED = "failed"                              # Ошибка оплаты


class PaymentMethod(str, Enum):
    """Способы оплаты."""
    BALANCE = "balance"                # С баланса аккаунта
    DIRECT_TRANSFER = "directTransfer"  # Перевод по реквизитам + скриншот
    OZONPAY = "ozonpay"                # Онлайн через Ozon Pay


class DeliveryType(str, Enum):
    CDEK = "cdek"
    RUSSIAN_POST = "russianPost"
    PICKUP = "pickup"


class DeliverySpeed(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"


class DiscountType(str, Enum):
    """Тип скидки промокода."""
    PERCENTAGE = "percentage"  # Процент от суммы товаров
    FIXED = "fixed"            # Фиксированная сумма в рублях


class TopupStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================
# ПОЛЬЗОВАТЕЛИ (USERS)
# ============================================================

class User(BaseModel):
    """
    Пользователь (ответ API).

    Хеш пароля наружу не отдаётся.
    """
    id: int
    email: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    is_admin: bool = False
    balance: Decimal = Decimal("0")
    telegram_linked: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_row(cls, row) -> "User":
        """Собрать модель из строки таблицы users."""
        return cls(
            id=row.id,
            email=row.email,
            username=row.username,
            full_name=row.full_name,
            phone=row.phone,
            address=row.address,
            is_admin=row.is_admin,
            balance=row.balance or Decimal("0"),
            telegram_linked=bool(row.telegram_chat_id),
            created_at=row.created_at
        )


class UserUpdate(BaseModel):
    """Обновление профиля (все поля опциональны)."""
    username: Optional[str] = Field(None, max_length=100)
    full_name: Optional[str] = Field(None, max_length=255)
    address: Optional[str] = Field(None, max_length=1000)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6, max_length=128)


# ============================================================
# РЕГИСТРАЦИЯ С ПОДТВЕРЖДЕНИЕМ ТЕЛЕФОНА
# ============================================================

class RegistrationRequest(BaseModel):
    """
    Заявка на регистрацию.

    Пользователь создаётся только после подтверждения
    телефона в Telegram-боте.
    """
    phone: str = Field(..., min_length=5, max_length=32, description="Телефон в любом формате")
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    full_name: Optional[str] = Field(None, max_length=255)
    username: Optional[str] = Field(None, max_length=100)
    address: Optional[str] = Field(None, max_length=1000)

    # Клиент может сгенерировать токен сам (как в старом фронтенде)
    verification_token: Optional[str] = Field(None, min_length=16, max_length=128)

    class Config:
        json_schema_extra = {
            "example": {
                "phone": "8 (999) 123-45-67",
                "email": "anna@example.com",
                "password": "monstera42",
                "full_name": "Анна Иванова",
                "address": "Москва, ул. Ботаническая, 1"
            }
        }


class VerificationCheckRequest(BaseModel):
    phone: str
    verification_token: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


# ============================================================
# ТОВАРЫ (PRODUCTS)
# ============================================================

class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Название растения")
    description: Optional[str] = Field(None, max_length=10000)
    price: Decimal = Field(..., gt=0, description="Цена в рублях")
    original_price: Optional[Decimal] = Field(None, gt=0, description="Цена до скидки")
    quantity: int = Field(default=0, ge=0, description="Остаток на складе")
    category: Optional[str] = Field(None, max_length=100)
    images: List[str] = Field(default_factory=list)
    labels: List[str] = Field(default_factory=list)

    is_available: bool = True
    is_preorder: bool = False
    is_rare: bool = False
    is_easy_to_care: bool = False
    is_pet_safe: bool = False
    is_air_purifying: bool = False
    is_hot_deal: bool = False
    is_bestseller: bool = False
    is_discounted: bool = False

    light_level: Optional[str] = None
    humidity_level: Optional[str] = None
    plant_type: Optional[str] = None
    origin: Optional[str] = None


class ProductCreate(ProductBase):
    """
    Модель для создания товара.

    Используется админом при добавлении растения в каталог.
    """

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Монстера деликатесная",
                "description": "Крупное тропическое растение с резными листьями",
                "price": 2500,
                "quantity": 10,
                "category": "tropical",
                "images": ["/uploads/monstera.jpg"],
                "labels": ["Хит"],
                "is_easy_to_care": True,
                "is_air_purifying": True
            }
        }


class ProductUpdate(BaseModel):
    """Модель для обновления товара."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    price: Optional[Decimal] = Field(None, gt=0)
    original_price: Optional[Decimal] = Field(None, gt=0)
    quantity: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    images: Optional[List[str]] = None
    labels: Optional[List[str]] = None
    is_available: Optional[bool] = None
    is_preorder: Optional[bool] = None
    is_rare: Optional[bool] = None
    is_easy_to_care: Optional[bool] = None
    is_pet_safe: Optional[bool] = None
    is_air_purifying: Optional[bool] = None
    is_hot_deal: Optional[bool] = None
    is_bestseller: Optional[bool] = None
    is_discounted: Optional[bool] = None
    light_level: Optional[str] = None
    humidity_level: Optional[str] = None
    plant_type: Optional[str] = None
    origin: Optional[str] = None


class Product(ProductBase):
    id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============================================================
# ЗАКАЗЫ (ORDERS)
# ============================================================

class OrderItemRequest(BaseModel):
    """Позиция корзины от клиента: только ID и количество."""
    product_id: int
    quantity: int = Field(..., ge=1, le=1000)


class OrderItemSnapshot(BaseModel):
    """
    Снимок товара в заказе.

    Цена и название фиксируются на момент покупки и
    не меняются при редактировании каталога.
    """
    id: int
    name: str
    price: Decimal
    quantity: int


class CreateOrderRequest(BaseModel):
    """Оформление заказа."""
    user_id: Optional[int] = Field(None, description="Только админ может оформить заказ за другого")
    items: List[OrderItemRequest]
    delivery_amount: Decimal = Field(..., ge=0)
    delivery_type: DeliveryType
    delivery_speed: DeliverySpeed = DeliverySpeed.STANDARD
    payment_method: PaymentMethod
    promo_code: Optional[str] = None
    full_name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=32)
    address: Optional[str] = Field(None, max_length=1000)
    comment: Optional[str] = Field(None, max_length=2000)
    need_insulation: bool = False
    payment_proof_url: Optional[str] = None

    @field_validator("promo_code")
    @classmethod
    def _upper_promo(cls, value: Optional[str]) -> Optional[str]:
        value = (value or "").strip().upper()
        return value or None

    class Config:
        json_schema_extra = {
            "example": {
                "items": [{"product_id": 1, "quantity": 2}],
                "delivery_amount": 350,
                "delivery_type": "cdek",
                "payment_method": "ozonpay",
                "promo_code": "SPRING10",
                "full_name": "Анна Иванова",
                "phone": "+79991234567",
                "address": "Москва, ул. Ботаническая, 1"
            }
        }


class Order(BaseModel):
    """Заказ (ответ API)."""
    id: int
    user_id: int
    items: List[OrderItemSnapshot]
    total_amount: Decimal
    delivery_amount: Decimal
    delivery_type: str
    delivery_speed: Optional[str] = None
    payment_method: str
    payment_status: str
    order_status: str
    state: str
    product_quantities_reduced: bool
    promo_code: Optional[str] = None
    promo_code_discount: Decimal = Decimal("0")
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    comment: Optional[str] = None
    need_insulation: bool = False
    payment_proof_url: Optional[str] = None
    admin_comment: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery_date: Optional[str] = None
    ozonpay_payment_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CreateOrderResponse(BaseModel):
    """
    Ответ на оформление заказа.

    Для Ozon Pay возвращается ссылка на оплату, либо
    payment_error + payment_error_code, если платёж создать не удалось
    (заказ при этом сохранён, оплату можно повторить).
    """
    order: Order
    payment_url: Optional[str] = None
    payment_id: Optional[str] = None
    payment_error: Optional[str] = None
    payment_error_code: Optional[str] = None


class AdminOrderUpdate(BaseModel):
    order_status: Optional[str] = Field(None, description="pending/paid/processing/shipped/completed/cancelled")
    admin_comment: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery_date: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: str


class ApplyPromoRequest(BaseModel):
    promo_code: str


# ============================================================
# ПРОМОКОДЫ (PROMO CODES)
# ============================================================

class PromoCodeCreate(BaseModel):
    code: str = Field(..., min_length=2, max_length=64)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(..., gt=0)
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def _upper_code(cls, value: str) -> str:
        return value.strip().upper()


class PromoCodeUpdate(BaseModel):
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, gt=0)
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class PromoCode(BaseModel):
    id: int
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: Decimal
    min_order_amount: Optional[Decimal] = None
    max_uses: Optional[int] = None
    current_uses: int = 0
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    class Config:
        from_attributes = True


class PromoValidateRequest(BaseModel):
    code: str
    cart_total: Decimal = Field(..., ge=0, description="Сумма товаров без доставки")


class PromoValidation(BaseModel):
    """Результат проверки промокода."""
    valid: bool
    code: str
    discount: Decimal = Decimal("0")
    final_amount: Optional[Decimal] = None
    message: Optional[str] = None


# ============================================================
# ОТЗЫВЫ (REVIEWS)
# ============================================================

class ReviewCreate(BaseModel):
    product_id: Optional[int] = None
    rating: int = Field(..., ge=1, le=5)
    text: str = Field(..., min_length=1, max_length=5000)
    images: List[str] = Field(default_factory=list)


class Review(BaseModel):
    id: int
    user_id: int
    product_id: Optional[int] = None
    rating: int
    text: str
    images: List[str] = []
    is_approved: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============================================================
# БАЛАНС
# ============================================================

class TopupRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, le=Decimal("500000"))


class AdminBalanceRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)


class BalanceTopup(BaseModel):
    id: int
    amount: Decimal
    status: str
    ozonpay_payment_url: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============================================================
# НАСТРОЙКИ
# ============================================================

class TelegramSettingsModel(BaseModel):
    bot_token: Optional[str] = None
    chat_id: Optional[str] = None
    enable_notifications: bool = True

    class Config:
        from_attributes = True


class PaymentDetailsModel(BaseModel):
    bank_details: Optional[str] = None
    qr_code_url: Optional[str] = None
    instructions: Optional[str] = None

    class Config:
        from_attributes = True
