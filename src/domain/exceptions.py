

class TicketingError(Exception):
    """
    Base exception for all domain-level errors
    inside the reservation engine.
    """

    status_code = 500
    code = "TICKETING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(TicketingError):
    """Raised when an event, ticket type, order or ticket does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class BadRequestError(TicketingError):
    """Raised when a request violates quantity, sale window or discount policy."""

    status_code = 400
    code = "BAD_REQUEST"


class DiscountCodeError(BadRequestError):
    code = "INVALID_DISCOUNT_CODE"


class ForbiddenError(TicketingError):
    """Raised when the target is not sellable or the action is not permitted."""

    status_code = 403
    code = "FORBIDDEN"


class PaymentVerificationError(ForbiddenError):
    code = "PAYMENT_VERIFICATION_FAILED"


class ConflictError(TicketingError):
    """Raised when the current state of the store forbids the operation."""

    status_code = 409
    code = "CONFLICT"


class InsufficientInventoryError(ConflictError):
    """Raised when a ticket type has fewer units left than requested."""

    code = "INSUFFICIENT_INVENTORY"

    def __init__(self, ticket_type_name: str, available: int):
        self.ticket_type_name = ticket_type_name
        self.available = max(available, 0)
        super().__init__(
            f'Insufficient tickets available for "{ticket_type_name}". '
            f"Only {self.available} left."
        )


class InvalidStateTransitionError(ConflictError):
    """
    Raised when an illegal order or ticket state transition is attempted.
    """

    code = "INVALID_STATE_TRANSITION"

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class OrderExpiredError(ConflictError):
    code = "ORDER_EXPIRED"


class RetryableConflictError(ConflictError):
    """
    Raised when a transaction lost a lock wait, hit its timeout or was
    chosen as a serialization victim. Nothing was written; retrying is safe.
    """

    code = "RETRYABLE_CONFLICT"
