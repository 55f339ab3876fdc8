"""
Модуль: services/order_state.py
Описание: Состояние заказа как единый тип
Проект: Plant Shop Backend

В таблице orders две колонки: payment_status и order_status. Чтобы
в базе не появлялись бессмысленные сочетания (например, "заказ
выполнен, но не оплачен"), обе колонки пишутся только отсюда.

Допустимые состояния:

    OrderState               payment_status          order_status
    ─────────────────────────────────────────────────────────────
    AWAITING_PAYMENT         pending                 pending
    PENDING_VERIFICATION     pending_verification    pending
    VERIFICATION             verification            pending
    PAID                     completed               processing
    SHIPPED                  completed               shipped
    COMPLETED                completed               completed
    PAYMENT_FAILED           failed                  cancelled
    CANCELLED                pending                 cancelled
    CANCELLED_AFTER_PAYMENT  completed               cancelled

Переходы задаются событиями (OrderEvent), см. TRANSITIONS.

Использование:
    state = OrderState.of(order)
    new_state = next_state(state, OrderEvent.PAY)
    apply_state(order, new_state)
"""

from enum import Enum
from typing import Dict, Optional, Set, Tuple

from plantshop.database.models import OrderStatus, PaymentStatus
from plantshop.utils.exceptions import InvalidStateTransition


class OrderState(str, Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    PENDING_VERIFICATION = "pending_verification"
    VERIFICATION = "verification"
    PAID = "paid"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"
    CANCELLED_AFTER_PAYMENT = "cancelled_after_payment"

    @property
    def columns(self) -> Tuple[str, str]:
        """Значения (payment_status, order_status) для записи в БД."""
        payment, order = STATE_COLUMNS[self]
        return payment.value, order.value

    @property
    def is_paid(self) -> bool:
        return self in PAID_STATES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @classmethod
    def from_columns(cls, payment_status: str, order_status: str) -> Optional["OrderState"]:
        """Состояние по паре колонок. None — недопустимое сочетание."""
        return _COLUMNS_TO_STATE.get((payment_status, order_status))

    @classmethod
    def of(cls, order) -> "OrderState":
        """
        Состояние строки orders.

        Исключения:
            InvalidStateTransition: В строке недопустимое сочетание статусов
        """
        state = cls.from_columns(order.payment_status, order.order_status)
        if state is None:
            raise InvalidStateTransition(
                f"Заказ #{order.id} в некорректном состоянии: "
                f"{order.payment_status}/{order.order_status}"
            )
        return state


class OrderEvent(str, Enum):
    ATTACH_PROOF = "attach_proof"                        # Загружен скриншот оплаты
    SUBMIT_FOR_VERIFICATION = "submit_for_verification"  # Отправлен на проверку
    PAY = "pay"                                          # Оплата подтверждена
    FAIL = "fail"                                        # Платёж не прошёл
    RETRY = "retry"                                      # Повторная попытка оплаты
    SHIP = "ship"
    COMPLETE = "complete"
    CANCEL = "cancel"


STATE_COLUMNS: Dict[OrderState, Tuple[PaymentStatus, OrderStatus]] = {
    OrderState.AWAITING_PAYMENT: (PaymentStatus.PENDING, OrderStatus.PENDING),
    OrderState.PENDING_VERIFICATION: (PaymentStatus.PENDING_VERIFICATION, OrderStatus.PENDING),
    OrderState.VERIFICATION: (PaymentStatus.VERIFICATION, OrderStatus.PENDING),
    OrderState.PAID: (PaymentStatus.COMPLETED, OrderStatus.PROCESSING),
    OrderState.SHIPPED: (PaymentStatus.COMPLETED, OrderStatus.SHIPPED),
    OrderState.COMPLETED: (PaymentStatus.COMPLETED, OrderStatus.COMPLETED),
    OrderState.PAYMENT_FAILED: (PaymentStatus.FAILED, OrderStatus.CANCELLED),
    OrderState.CANCELLED: (PaymentStatus.PENDING, OrderStatus.CANCELLED),
    OrderState.CANCELLED_AFTER_PAYMENT: (PaymentStatus.COMPLETED, OrderStatus.CANCELLED),
}

_COLUMNS_TO_STATE = {
    (payment.value, order.value): state
    for state, (payment, order) in STATE_COLUMNS.items()
}

PAID_STATES: Set[OrderState] = {OrderState.PAID, OrderState.SHIPPED, OrderState.COMPLETED}

UNPAID_STATES: Set[OrderState] = {
    OrderState.AWAITING_PAYMENT,
    OrderState.PENDING_VERIFICATION,
    OrderState.VERIFICATION,
}

TERMINAL_STATES: Set[OrderState] = {
    OrderState.COMPLETED,
    OrderState.PAYMENT_FAILED,
    OrderState.CANCELLED,
    OrderState.CANCELLED_AFTER_PAYMENT,
}


# (событие, текущее состояние) → новое состояние
TRANSITIONS: Dict[Tuple[OrderEvent, OrderState], OrderState] = {
    (OrderEvent.ATTACH_PROOF, OrderState.AWAITING_PAYMENT): OrderState.PENDING_VERIFICATION,
    (OrderEvent.ATTACH_PROOF, OrderState.PENDING_VERIFICATION): OrderState.PENDING_VERIFICATION,

    (OrderEvent.SUBMIT_FOR_VERIFICATION, OrderState.PENDING_VERIFICATION): OrderState.VERIFICATION,
    (OrderEvent.SUBMIT_FOR_VERIFICATION, OrderState.VERIFICATION): OrderState.VERIFICATION,

    (OrderEvent.PAY, OrderState.AWAITING_PAYMENT): OrderState.PAID,
    (OrderEvent.PAY, OrderState.PENDING_VERIFICATION): OrderState.PAID,
    (OrderEvent.PAY, OrderState.VERIFICATION): OrderState.PAID,
    # Отказ по карте, затем успешная оплата по той же ссылке
    (OrderEvent.PAY, OrderState.PAYMENT_FAILED): OrderState.PAID,

    (OrderEvent.FAIL, OrderState.AWAITING_PAYMENT): OrderState.PAYMENT_FAILED,

    (OrderEvent.RETRY, OrderState.AWAITING_PAYMENT): OrderState.AWAITING_PAYMENT,
    (OrderEvent.RETRY, OrderState.PAYMENT_FAILED): OrderState.AWAITING_PAYMENT,

    (OrderEvent.SHIP, OrderState.PAID): OrderState.SHIPPED,

    (OrderEvent.COMPLETE, OrderState.PAID): OrderState.COMPLETED,
    (OrderEvent.COMPLETE, OrderState.SHIPPED): OrderState.COMPLETED,

    (OrderEvent.CANCEL, OrderState.AWAITING_PAYMENT): OrderState.CANCELLED,
    (OrderEvent.CANCEL, OrderState.PENDING_VERIFICATION): OrderState.CANCELLED,
    (OrderEvent.CANCEL, OrderState.VERIFICATION): OrderState.CANCELLED,
    (OrderEvent.CANCEL, OrderState.PAID): OrderState.CANCELLED_AFTER_PAYMENT,
    (OrderEvent.CANCEL, OrderState.SHIPPED): OrderState.CANCELLED_AFTER_PAYMENT,
}


# Состояния, в которых событие уже считается выполненным.
# Повтор такого события (второй webhook, повторный клик админа) ничего не меняет
ALREADY_APPLIED: Dict[OrderEvent, Set[OrderState]] = {
    OrderEvent.PAY: PAID_STATES,
    OrderEvent.FAIL: {OrderState.PAYMENT_FAILED},
    OrderEvent.SHIP: {OrderState.SHIPPED},
    OrderEvent.COMPLETE: {OrderState.COMPLETED},
    OrderEvent.CANCEL: {
        OrderState.CANCELLED,
        OrderState.CANCELLED_AFTER_PAYMENT,
        OrderState.PAYMENT_FAILED,
    },
}


def can_transition(state: OrderState, event: OrderEvent) -> bool:
    return (event, state) in TRANSITIONS


def is_already_applied(state: OrderState, event: OrderEvent) -> bool:
    return state in ALREADY_APPLIED.get(event, set())


def next_state(state: OrderState, event: OrderEvent) -> OrderState:
    """
    Новое состояние после события.

    Исключения:
        InvalidStateTransition: Событие недопустимо в текущем состоянии
    """
    try:
        return TRANSITIONS[(event, state)]
    except KeyError:
        raise InvalidStateTransition(
            f"Нельзя выполнить «{event.value}» для заказа в состоянии «{state.value}»"
        ) from None


def apply_state(order, state: OrderState) -> None:
    """Записать обе колонки статуса в строку orders."""
    order.payment_status, order.order_status = state.columns


# Статусы, которые админ выбирает в интерфейсе → события
ADMIN_STATUS_EVENTS: Dict[str, OrderEvent] = {
    "paid": OrderEvent.PAY,
    "processing": OrderEvent.PAY,
    "shipped": OrderEvent.SHIP,
    "completed": OrderEvent.COMPLETE,
    "cancelled": OrderEvent.CANCEL,
}


def event_for_admin_status(status: str) -> Optional[OrderEvent]:
    """
    Событие для статуса, выбранного админом.

    "pending" отдельного события не имеет: вернуть оплаченный
    заказ в ожидание оплаты нельзя.
    """
    return ADMIN_STATUS_EVENTS.get((status or "").strip().lower())
