"""
Модуль: database/tables.py
Описание: Таблицы базы данных (SQLAlchemy ORM)
Проект: Plant Shop Backend

Pydantic-модели для API лежат отдельно, в database/models.py.
Время везде хранится в UTC без таймзоны.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Integer, Numeric,
    String, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship

from plantshop.database.connection import Base


def utcnow() -> datetime:
    """Текущее время UTC (naive, как хранится в SQLite)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================
# ПОЛЬЗОВАТЕЛИ
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    username = Column(String(100), nullable=True)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True, index=True)
    address = Column(Text, nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    balance = Column(Numeric(12, 2), default=0, nullable=False)

    # Чат в Telegram для уведомлений (появляется после верификации)
    telegram_chat_id = Column(String(64), nullable=True, index=True)

    # Токен заявки, из которой создан пользователь.
    # Повторный опрос check-phone-verification с этим токеном логинит его же
    verification_token = Column(String(128), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Удаление аккаунта удаляет заказы, отзывы и использования промокодов
    orders = relationship("Order", back_populates="user", cascade="all, delete-orphan")
    reviews = relationship("Review", back_populates="user", cascade="all, delete-orphan")
    promo_code_uses = relationship("PromoCodeUse", back_populates="user", cascade="all, delete-orphan")
    balance_topups = relationship("BalanceTopup", back_populates="user", cascade="all, delete-orphan")


class PendingRegistration(Base):
    """Регистрация, ожидающая подтверждения телефона через бота."""
    __tablename__ = "pending_registrations"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(32), nullable=False, index=True)

    # email, password_hash, full_name, username, address.
    # Пароль здесь уже захеширован
    user_data = Column(JSON, nullable=False)

    verification_token = Column(String(128), unique=True, nullable=False, index=True)
    verified = Column(Boolean, default=False, nullable=False)

    # Чат, из которого пришло подтверждение
    telegram_chat_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)


# ============================================================
# ТОВАРЫ
# ============================================================

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    original_price = Column(Numeric(12, 2), nullable=True)
    quantity = Column(Integer, default=0, nullable=False)
    category = Column(String(100), nullable=True, index=True)

    images = Column(JSON, default=list, nullable=False)
    labels = Column(JSON, default=list, nullable=False)

    # Флаги витрины
    is_available = Column(Boolean, default=True, nullable=False)
    is_preorder = Column(Boolean, default=False, nullable=False)
    is_rare = Column(Boolean, default=False, nullable=False)
    is_easy_to_care = Column(Boolean, default=False, nullable=False)
    is_pet_safe = Column(Boolean, default=False, nullable=False)
    is_air_purifying = Column(Boolean, default=False, nullable=False)
    is_hot_deal = Column(Boolean, default=False, nullable=False)
    is_bestseller = Column(Boolean, default=False, nullable=False)
    is_discounted = Column(Boolean, default=False, nullable=False)

    # Уход за растением
    light_level = Column(String(50), nullable=True)
    humidity_level = Column(String(50), nullable=True)
    plant_type = Column(String(100), nullable=True)
    origin = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)


# ============================================================
# ЗАКАЗЫ
# ============================================================

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Снимок товаров на момент заказа: [{id, name, price, quantity}]
    items = Column(JSON, nullable=False)

    total_amount = Column(Numeric(12, 2), nullable=False)
    delivery_amount = Column(Numeric(12, 2), default=0, nullable=False)
    delivery_type = Column(String(32), nullable=False)
    delivery_speed = Column(String(32), nullable=True)
    payment_method = Column(String(32), nullable=False)

    # Пишутся только через services.order_state
    payment_status = Column(String(32), default="pending", nullable=False)
    order_status = Column(String(32), default="pending", nullable=False)

    product_quantities_reduced = Column(Boolean, default=False, nullable=False)

    promo_code = Column(String(64), nullable=True)
    promo_code_discount = Column(Numeric(12, 2), default=0, nullable=False)

    # Контакты и адрес
    full_name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    address = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)
    need_insulation = Column(Boolean, default=False, nullable=False)

    payment_proof_url = Column(String(500), nullable=True)

    # Поля администратора
    admin_comment = Column(Text, nullable=True)
    tracking_number = Column(String(100), nullable=True)
    estimated_delivery_date = Column(String(32), nullable=True)

    # Ozon Pay
    ozonpay_payment_id = Column(String(128), nullable=True, index=True)
    ozonpay_payment_url = Column(String(500), nullable=True)
    ozonpay_payment_status = Column(String(64), nullable=True)
    ozonpay_transaction_id = Column(String(128), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="orders")


# ============================================================
# ПРОМОКОДЫ
# ============================================================

class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    discount_type = Column(String(16), nullable=False)  # percentage | fixed
    discount_value = Column(Numeric(12, 2), nullable=False)
    min_order_amount = Column(Numeric(12, 2), nullable=True)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class PromoCodeUse(Base):
    __tablename__ = "promo_code_uses"
    __table_args__ = (
        UniqueConstraint("promo_code_id", "user_id", name="uq_promo_code_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    promo_code_id = Column(Integer, ForeignKey("promo_codes.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    used_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="promo_code_uses")


# ============================================================
# ОТЗЫВЫ
# ============================================================

class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True, index=True)
    rating = Column(Integer, nullable=False)
    text = Column(Text, nullable=False)
    images = Column(JSON, default=list, nullable=False)
    is_approved = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="reviews")


# ============================================================
# БАЛАНС
# ============================================================

class BalanceTopup(Base):
    __tablename__ = "balance_topups"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(32), default="pending", nullable=False)
    ozonpay_payment_id = Column(String(128), nullable=True, index=True)
    ozonpay_payment_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="balance_topups")


# ============================================================
# НАСТРОЙКИ (ОДНА СТРОКА НА ТАБЛИЦУ)
# ============================================================

class TelegramSettings(Base):
    __tablename__ = "telegram_settings"

    id = Column(Integer, primary_key=True)
    bot_token = Column(String(255), nullable=True)
    chat_id = Column(String(64), nullable=True)  # Чат администратора
    enable_notifications = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class PaymentDetails(Base):
    """Реквизиты для оплаты прямым переводом."""
    __tablename__ = "payment_details"

    id = Column(Integer, primary_key=True)
    bank_details = Column(Text, nullable=True)
    qr_code_url = Column(String(500), nullable=True)
    instructions = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
