# src/domain/state_machine.py

from enum import Enum
from typing import Dict, Set, Type

from src.domain.exceptions import InvalidStateTransitionError


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REFUNDED = "refunded"


class TicketStatus(str, Enum):
    RESERVED = "RESERVED"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class _StateMachine:
    """
    Shared transition checks. Subclasses declare the status enum
    and the legal transitions out of each state.
    """

    _STATUS_TYPE: Type[Enum]
    _ALLOWED_TRANSITIONS: Dict[Enum, Set[Enum]]

    @classmethod
    def can_transition(cls, from_status, to_status) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(cls, from_status, to_status) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(cls, status) -> Set:
        cls._ensure_valid_status(status)
        return set(cls._ALLOWED_TRANSITIONS.get(status, set()))

    @classmethod
    def _ensure_valid_status(cls, status) -> None:
        if not isinstance(status, cls._STATUS_TYPE):
            raise TypeError(
                f"Expected {cls._STATUS_TYPE.__name__}, got {type(status)}"
            )


class OrderStateMachine(_StateMachine):
    """
    Order lifecycle. Only a pending order can move, and only
    confirmed -> refunded is legal after that.
    """

    _STATUS_TYPE = OrderStatus
    _ALLOWED_TRANSITIONS = {
        OrderStatus.PENDING: {
            OrderStatus.CONFIRMED,
            OrderStatus.CANCELLED,
            OrderStatus.FAILED,
        },
        OrderStatus.CONFIRMED: {
            OrderStatus.REFUNDED,
        },
        OrderStatus.CANCELLED: set(),
        OrderStatus.FAILED: set(),
        OrderStatus.REFUNDED: set(),
    }


class TicketStateMachine(_StateMachine):
    _STATUS_TYPE = TicketStatus
    _ALLOWED_TRANSITIONS = {
        TicketStatus.RESERVED: {
            TicketStatus.CONFIRMED,
            TicketStatus.CANCELLED,
        },
        TicketStatus.CONFIRMED: {
            TicketStatus.REFUNDED,
        },
        TicketStatus.CANCELLED: set(),
        TicketStatus.REFUNDED: set(),
    }
