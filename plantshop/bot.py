"""
Модуль: bot.py
Описание: Telegram-бот подтверждения телефона и уведомлений
Проект: Plant Shop Backend

Что делает:
    - /start <token> — подтверждение телефона при регистрации на сайте
    - /start — привязка чата к уже зарегистрированному аккаунту
    - /orders — последние заказы
    - /unlink — отключить уведомления
    - /help — справка

Как работает подтверждение (наглядно):
    1. Анна заполняет форму регистрации на сайте
    2. Сайт показывает ссылку: t.me/plantshop_bot?start=<token>
    3. Анна открывает бота, нажимает "📱 Поделиться номером"
    4. Бот сверяет номер контакта с номером из формы
    5. Совпал → заявка подтверждена, сайт при следующем опросе
       создаёт аккаунт и логинит Анну

Пользователей бот не создаёт, только помечает заявку.

Запуск:
    python -m plantshop.bot
"""

import asyncio
import logging
from typing import Optional

from aiogram import Bot, Dispatcher, F, types
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import KeyboardButton, ReplyKeyboardMarkup, ReplyKeyboardRemove

from plantshop.config import settings
from plantshop.database.connection import init_db, session_scope
from plantshop.services.notification_service import ORDER_STATUS_TEXT
from plantshop.services.order_service import OrderService
from plantshop.services.phone_verification import PhoneVerificationService
from plantshop.utils.logger import setup_logging


# ============================================================
# НАСТРОЙКА
# ============================================================

logger = logging.getLogger("plantshop.bot")

dp = Dispatcher()


class Verification(StatesGroup):
    """Чего бот ждёт от пользователя."""
    waiting_registration_contact = State()  # Номер для заявки с сайта
    waiting_link_contact = State()          # Номер для привязки чата


def contact_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text="📱 Поделиться номером", request_contact=True)]],
        resize_keyboard=True,
        one_time_keyboard=True
    )


def _own_contact_phone(message: types.Message) -> Optional[str]:
    """Номер из карточки контакта самого отправителя, иначе None."""
    contact = message.contact
    if contact is None or contact.user_id != message.from_user.id:
        return None
    return contact.phone_number


def _phone_from_message(message: types.Message) -> Optional[str]:
    """
    Номер из контакта или из текста (для заявки с токеном с сайта).

    Контакт принимается только свой: чужую карточку контакта
    переслать нельзя.
    """
    if message.contact:
        if message.contact.user_id and message.contact.user_id != message.from_user.id:
            return None
        return message.contact.phone_number
    if message.text and not message.text.startswith("/"):
        return message.text
    return None


# ============================================================
# КОМАНДА /start
# ============================================================

@dp.message(CommandStart())
async def cmd_start(message: types.Message, command: CommandObject, state: FSMContext):
    """
    Два сценария:
      A) /start <token> — подтверждение телефона для заявки с сайта
      B) /start — привязка чата к существующему аккаунту
    """
    token = command.args
    user = message.from_user
    logger.info(f"👤 /start от {user.id}, token={'есть' if token else 'нет'}")

    if token:
        with session_scope() as db:
            registration = PhoneVerificationService(db).start(token)

        if registration is None:
            await message.answer(
                "⏰ Ссылка устарела или уже использована.\n"
                "Вернитесь на сайт и начните регистрацию заново."
            )
            return

        await state.set_state(Verification.waiting_registration_contact)
        await state.update_data(token=token)
        await message.answer(
            f"👋 Здравствуйте, <b>{user.first_name}</b>!\n\n"
            f"Чтобы завершить регистрацию в магазине растений 🌿, "
            f"поделитесь номером телефона кнопкой ниже.\n\n"
            f"Номер должен совпадать с указанным на сайте.",
            reply_markup=contact_keyboard()
        )
        return

    await state.set_state(Verification.waiting_link_contact)
    await message.answer(
        f"👋 Здравствуйте, <b>{user.first_name}</b>!\n\n"
        f"Если у вас уже есть аккаунт в нашем магазине, поделитесь номером "
        f"телефона, и мы будем присылать сюда уведомления о заказах 📦",
        reply_markup=contact_keyboard()
    )


# ============================================================
# ПОЛУЧЕНИЕ НОМЕРА
# ============================================================

@dp.message(Verification.waiting_registration_contact)
async def registration_contact(message: types.Message, state: FSMContext):
    """Номер для заявки: сверяем с номером из формы."""
    phone = _phone_from_message(message)
    if not phone:
        await message.answer(
            "Пожалуйста, нажмите кнопку «📱 Поделиться номером» или пришлите свой номер текстом.",
            reply_markup=contact_keyboard()
        )
        return

    data = await state.get_data()
    token = data.get("token")

    with session_scope() as db:
        result = PhoneVerificationService(db).confirm_contact(token, phone, chat_id=message.chat.id)

    if result.verified:
        await state.clear()
        await message.answer(
            "✅ Телефон подтверждён!\n\n"
            "Вернитесь на сайт: регистрация завершится автоматически.",
            reply_markup=ReplyKeyboardRemove()
        )
        logger.info(f"✅ Телефон {result.expected_phone} подтверждён в чате {message.chat.id}")
        return

    if result.reason == "phone_mismatch":
        await message.answer(
            "❌ Номер не совпадает с указанным при регистрации.\n"
            "Проверьте номер на сайте или поделитесь нужным контактом.",
            reply_markup=contact_keyboard()
        )
        return

    await state.clear()
    if result.reason == "not_found":
        text = "⏰ Заявка устарела. Вернитесь на сайт и начните регистрацию заново."
    else:
        text = "😔 Не удалось подтвердить номер, попробуйте ещё раз чуть позже."
    await message.answer(text, reply_markup=ReplyKeyboardRemove())


@dp.message(Verification.waiting_link_contact)
async def link_contact(message: types.Message, state: FSMContext):
    """
    Номер для привязки чата к существующему аккаунту.

    Здесь нет токена с сайта, поэтому номер, набранный текстом, не
    доказывает владение аккаунтом: принимается только свой контакт.
    """
    phone = _own_contact_phone(message)
    if not phone:
        await message.answer("Нажмите кнопку «📱 Поделиться номером».", reply_markup=contact_keyboard())
        return

    await state.clear()

    with session_scope() as db:
        user = PhoneVerificationService(db).link_chat(phone, message.chat.id)
        name = (user.full_name or user.username or user.email) if user else None

    if name is None:
        await message.answer(
            f"🔎 Аккаунт с этим номером не найден.\n"
            f"Зарегистрируйтесь на сайте: {settings.SITE_URL}",
            reply_markup=ReplyKeyboardRemove()
        )
        return

    await message.answer(
        f"🔗 Готово, {name}! Уведомления о заказах будут приходить сюда.",
        reply_markup=ReplyKeyboardRemove()
    )


# ============================================================
# КОМАНДЫ
# ============================================================

@dp.message(Command("orders"))
async def cmd_orders(message: types.Message):
    """Последние заказы пользователя."""
    with session_scope() as db:
        user = PhoneVerificationService(db).find_user_by_chat(message.chat.id)
        if user is None:
            await message.answer("Чат не привязан к аккаунту. Отправьте /start, чтобы привязать.")
            return

        orders = OrderService(db).list_for_user(user.id)[:5]
        lines = [
            f"#{o.id} · {o.total_amount} ₽ · {ORDER_STATUS_TEXT.get(o.order_status, o.order_status)}"
            for o in orders
        ]

    if not lines:
        await message.answer("У вас пока нет заказов 🌱")
        return

    await message.answer("📦 <b>Последние заказы</b>\n\n" + "\n".join(lines))


@dp.message(Command("unlink"))
async def cmd_unlink(message: types.Message):
    with session_scope() as db:
        unlinked = PhoneVerificationService(db).unlink_chat(message.chat.id)

    if unlinked:
        await message.answer("🔕 Уведомления отключены. Чтобы включить снова, отправьте /start.")
    else:
        await message.answer("Чат не был привязан к аккаунту.")


@dp.message(Command("help"))
async def cmd_help(message: types.Message):
    await message.answer(
        "🌿 <b>Бот магазина растений</b>\n\n"
        "/start — привязать аккаунт\n"
        "/orders — мои заказы\n"
        "/unlink — отключить уведомления\n\n"
        f"Сайт: {settings.SITE_URL}"
    )


@dp.message(F.contact)
async def stray_contact(message: types.Message, state: FSMContext):
    """Контакт без /start: считаем, что человек хочет привязать аккаунт."""
    await state.set_state(Verification.waiting_link_contact)
    await link_contact(message, state)


# ============================================================
# ЗАПУСК
# ============================================================

async def setup_commands(bot: Bot):
    """Регистрация команд в меню бота."""
    await bot.set_my_commands([
        types.BotCommand(command="start", description="Привязать аккаунт"),
        types.BotCommand(command="orders", description="Мои заказы"),
        types.BotCommand(command="unlink", description="Отключить уведомления"),
        types.BotCommand(command="help", description="Справка"),
    ])
    logger.info("✅ Команды зарегистрированы")


async def main():
    """Запуск бота."""
    setup_logging()
    init_db()

    if not settings.TELEGRAM_BOT_TOKEN:
        logger.error("❌ TELEGRAM_BOT_TOKEN не задан, бот не запущен")
        return

    bot = Bot(
        token=settings.TELEGRAM_BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML)
    )

    logger.info("🤖 Запуск бота магазина растений...")
    await setup_commands(bot)

    logger.info("✅ Бот запущен. Слушаем сообщения...")
    await dp.start_polling(bot)


if __name__ == "__main__":
    asyncio.run(main())
