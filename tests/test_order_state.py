import pytest

from plantshop.services.order_state import (
    TRANSITIONS, OrderEvent, OrderState, can_transition, event_for_admin_status,
    is_already_applied, next_state
)
from plantshop.utils.exceptions import InvalidStateTransition


class Row:
    """Минимальная строка orders для проверки колонок."""

    def __init__(self, payment_status, order_status):
        self.id = 1
        self.payment_status = payment_status
        self.order_status = order_status


def test_every_state_round_trips_through_columns():
    for state in OrderState:
        payment, order = state.columns
        assert OrderState.from_columns(payment, order) is state


def test_nonsense_column_pair_is_rejected():
    assert OrderState.from_columns("pending", "completed") is None
    with pytest.raises(InvalidStateTransition):
        OrderState.of(Row("failed", "shipped"))


def test_transitions_only_lead_to_valid_states():
    for (event, state), target in TRANSITIONS.items():
        assert isinstance(target, OrderState)
        assert next_state(state, event) is target


def test_happy_path_for_direct_transfer():
    state = OrderState.AWAITING_PAYMENT
    for event in (
        OrderEvent.ATTACH_PROOF,
        OrderEvent.SUBMIT_FOR_VERIFICATION,
        OrderEvent.PAY,
        OrderEvent.SHIP,
        OrderEvent.COMPLETE,
    ):
        state = next_state(state, event)
    assert state is OrderState.COMPLETED
    assert state.columns == ("completed", "completed")


@pytest.mark.parametrize("state, event", [
    (OrderState.COMPLETED, OrderEvent.CANCEL),
    (OrderState.CANCELLED, OrderEvent.PAY),
    (OrderState.AWAITING_PAYMENT, OrderEvent.SHIP),
    (OrderState.PAID, OrderEvent.FAIL),
    (OrderState.PAID, OrderEvent.RETRY),
])
def test_forbidden_transitions(state, event):
    assert not can_transition(state, event)
    with pytest.raises(InvalidStateTransition):
        next_state(state, event)


def test_payment_after_failed_attempt_is_accepted():
    assert next_state(OrderState.PAYMENT_FAILED, OrderEvent.PAY) is OrderState.PAID


def test_repeated_events_are_already_applied():
    assert is_already_applied(OrderState.PAID, OrderEvent.PAY)
    assert is_already_applied(OrderState.SHIPPED, OrderEvent.PAY)
    assert is_already_applied(OrderState.CANCELLED, OrderEvent.CANCEL)
    assert not is_already_applied(OrderState.AWAITING_PAYMENT, OrderEvent.PAY)


def test_paid_states():
    assert OrderState.PAID.is_paid
    assert not OrderState.CANCELLED_AFTER_PAYMENT.is_paid
    assert OrderState.PAYMENT_FAILED.is_terminal


def test_admin_statuses_map_to_events():
    assert event_for_admin_status("paid") is OrderEvent.PAY
    assert event_for_admin_status(" Processing ") is OrderEvent.PAY
    assert event_for_admin_status("shipped") is OrderEvent.SHIP
    assert event_for_admin_status("cancelled") is OrderEvent.CANCEL
    assert event_for_admin_status("pending") is None
    assert event_for_admin_status(None) is None
