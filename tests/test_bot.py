"""Обработчики бота на поддельных сообщениях (без обращения к Telegram)."""

import asyncio
from types import SimpleNamespace

import pytest
from aiogram.filters import CommandObject
from aiogram.fsm.context import FSMContext
from aiogram.fsm.storage.base import StorageKey
from aiogram.fsm.storage.memory import MemoryStorage

from plantshop import bot
from plantshop.services.pending_registrations import PendingRegistrationStore


CHAT_ID = 4242


class FakeMessage:
    def __init__(self, text=None, contact=None, user_id=CHAT_ID):
        self.text = text
        self.contact = contact
        self.from_user = SimpleNamespace(id=user_id, first_name="Анна")
        self.chat = SimpleNamespace(id=CHAT_ID)
        self.answers = []

    async def answer(self, text, **kwargs):
        self.answers.append(text)


def _contact(phone, user_id=CHAT_ID):
    return SimpleNamespace(phone_number=phone, user_id=user_id)


@pytest.fixture
def state():
    key = StorageKey(bot_id=1, chat_id=CHAT_ID, user_id=CHAT_ID)
    return FSMContext(storage=MemoryStorage(), key=key)


@pytest.fixture
def pending(db):
    PendingRegistrationStore(db).save("+79991234567", {"email": "anna@example.com", "password_hash": "x"}, "token-1")
    return "token-1"


def test_start_with_token_waits_for_contact(pending, state):
    message = FakeMessage(text=f"/start {pending}")
    command = CommandObject(prefix="/", command="start", args=pending)

    asyncio.run(bot.cmd_start(message, command, state))

    assert asyncio.run(state.get_state()) == bot.Verification.waiting_registration_contact.state
    assert asyncio.run(state.get_data()) == {"token": pending}
    assert "поделитесь номером" in message.answers[0]


def test_start_with_unknown_token(state):
    message = FakeMessage(text="/start missing")

    asyncio.run(bot.cmd_start(message, CommandObject(prefix="/", command="start", args="missing"), state))

    assert asyncio.run(state.get_state()) is None
    assert "устарела" in message.answers[0]


def test_own_contact_confirms_registration(db, pending, state):
    asyncio.run(state.update_data(token=pending))
    message = FakeMessage(contact=_contact("79991234567"))

    asyncio.run(bot.registration_contact(message, state))

    assert "подтверждён" in message.answers[0]
    db.expire_all()
    assert PendingRegistrationStore(db).check_verified("+79991234567", pending)


def test_forwarded_contact_is_not_accepted(db, pending, state):
    asyncio.run(state.update_data(token=pending))
    message = FakeMessage(contact=_contact("+79991234567", user_id=999))

    asyncio.run(bot.registration_contact(message, state))

    assert "Поделиться номером" in message.answers[0]
    assert not PendingRegistrationStore(db).check_verified("+79991234567", pending)


def test_other_phone_is_rejected(db, pending, state):
    asyncio.run(state.update_data(token=pending))
    message = FakeMessage(text="+7 999 000-00-00")

    asyncio.run(bot.registration_contact(message, state))

    assert "не совпадает" in message.answers[0]
    assert not PendingRegistrationStore(db).check_verified("+79991234567", pending)


def test_link_existing_account_and_unlink(db, make_user, state):
    user = make_user(phone="+79991234567", full_name="Анна Иванова")
    message = FakeMessage(contact=_contact("+79991234567"))

    asyncio.run(bot.stray_contact(message, state))

    assert "Анна Иванова" in message.answers[0]
    db.expire_all()
    assert db.get(type(user), user.id).telegram_chat_id == str(CHAT_ID)

    unlink = FakeMessage(text="/unlink")
    asyncio.run(bot.cmd_unlink(unlink))
    assert "отключены" in unlink.answers[0]


def test_orders_for_unlinked_chat():
    message = FakeMessage(text="/orders")

    asyncio.run(bot.cmd_orders(message))

    assert "не привязан" in message.answers[0]


def test_typed_phone_does_not_link_account(db, make_user, state):
    victim = make_user(phone="+79991234567", telegram_chat_id="1111")
    asyncio.run(state.set_state(bot.Verification.waiting_link_contact))
    message = FakeMessage(text="8 999 123 45 67")

    asyncio.run(bot.link_contact(message, state))

    assert "Поделиться номером" in message.answers[0]
    db.expire_all()
    assert db.get(type(victim), victim.id).telegram_chat_id == "1111"


def test_someone_elses_contact_does_not_link_account(db, make_user, state):
    victim = make_user(phone="+79991234567", telegram_chat_id="1111")
    message = FakeMessage(contact=_contact("+79991234567", user_id=999))

    asyncio.run(bot.stray_contact(message, state))

    assert "Поделиться номером" in message.answers[0]
    db.expire_all()
    assert db.get(type(victim), victim.id).telegram_chat_id == "1111"
