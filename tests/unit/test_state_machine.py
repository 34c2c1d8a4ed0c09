# tests/unit/test_state_machine.py

import pytest

from src.domain.state_machine import (
    OrderStateMachine,
    OrderStatus,
    TicketStateMachine,
    TicketStatus,
)
from src.domain.exceptions import InvalidStateTransitionError


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_order_happy_path():
    assert OrderStateMachine.can_transition(
        OrderStatus.PENDING,
        OrderStatus.CONFIRMED,
    )

    assert OrderStateMachine.can_transition(
        OrderStatus.CONFIRMED,
        OrderStatus.REFUNDED,
    )


def test_pending_order_can_be_released():
    assert OrderStateMachine.can_transition(OrderStatus.PENDING, OrderStatus.CANCELLED)
    assert OrderStateMachine.can_transition(OrderStatus.PENDING, OrderStatus.FAILED)


def test_ticket_happy_path():
    assert TicketStateMachine.can_transition(TicketStatus.RESERVED, TicketStatus.CONFIRMED)
    assert TicketStateMachine.can_transition(TicketStatus.CONFIRMED, TicketStatus.REFUNDED)
    assert TicketStateMachine.can_transition(TicketStatus.RESERVED, TicketStatus.CANCELLED)


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_cannot_refund_pending_order():
    with pytest.raises(InvalidStateTransitionError) as exc_info:
        OrderStateMachine.validate_transition(
            OrderStatus.PENDING,
            OrderStatus.REFUNDED,
        )

    assert exc_info.value.from_state == "pending"
    assert exc_info.value.to_state == "refunded"
    assert exc_info.value.status_code == 409


def test_cannot_cancel_confirmed_order():
    with pytest.raises(InvalidStateTransitionError):
        OrderStateMachine.validate_transition(
            OrderStatus.CONFIRMED,
            OrderStatus.CANCELLED,
        )


def test_confirmed_order_cannot_be_confirmed_again():
    assert not OrderStateMachine.can_transition(OrderStatus.CONFIRMED, OrderStatus.CONFIRMED)


@pytest.mark.parametrize(
    "status",
    [OrderStatus.CANCELLED, OrderStatus.FAILED, OrderStatus.REFUNDED],
)
def test_terminal_order_states(status):
    assert OrderStateMachine.is_terminal(status)

    with pytest.raises(InvalidStateTransitionError):
        OrderStateMachine.validate_transition(status, OrderStatus.CONFIRMED)


def test_cancelled_ticket_is_terminal():
    assert TicketStateMachine.is_terminal(TicketStatus.CANCELLED)

    with pytest.raises(InvalidStateTransitionError):
        TicketStateMachine.validate_transition(
            TicketStatus.CANCELLED,
            TicketStatus.CONFIRMED,
        )


def test_reserved_ticket_cannot_be_refunded():
    with pytest.raises(InvalidStateTransitionError):
        TicketStateMachine.validate_transition(
            TicketStatus.RESERVED,
            TicketStatus.REFUNDED,
        )


def test_allowed_transitions_are_a_copy():
    allowed = OrderStateMachine.get_allowed_transitions(OrderStatus.PENDING)
    allowed.clear()

    assert OrderStateMachine.get_allowed_transitions(OrderStatus.PENDING) == {
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
    }


def test_invalid_type_guard():
    with pytest.raises(TypeError):
        OrderStateMachine.validate_transition(
            "pending",  # invalid type
            OrderStatus.CONFIRMED,
        )


def test_machines_do_not_accept_each_others_statuses():
    with pytest.raises(TypeError):
        TicketStateMachine.can_transition(OrderStatus.PENDING, TicketStatus.CONFIRMED)
