"""Domain error codes and the error taxonomy shared by every operation."""

from dataclasses import dataclass
from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    INSUFFICIENT_TICKETS = "INSUFFICIENT_TICKETS"
    EVENT_NOT_OPEN = "EVENT_NOT_OPEN"
    EVENT_PASSED = "EVENT_PASSED"
    TICKET_ALREADY_USED = "TICKET_ALREADY_USED"
    TICKET_NOT_CANCELLABLE = "TICKET_NOT_CANCELLABLE"
    TICKET_NOT_PAID = "TICKET_NOT_PAID"
    CANCELLATION_WINDOW_CLOSED = "CANCELLATION_WINDOW_CLOSED"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_CALLBACK = "INVALID_CALLBACK"
    PAYMENT_PROVIDER_ERROR = "PAYMENT_PROVIDER_ERROR"
    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"
    FORBIDDEN = "FORBIDDEN"


@dataclass(eq=False)
class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    message: str

    status_code = 500

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    status_code = 409


class InputValidationError(DomainError):
    status_code = 400

    def __init__(self, message: str, code: ErrorCode = ErrorCode.INVALID_INPUT) -> None:
        super().__init__(code=code, message=message)


class UpstreamError(DomainError):
    status_code = 502


class ForbiddenError(DomainError):
    status_code = 403

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(code=ErrorCode.FORBIDDEN, message=message)


class EventNotFoundError(NotFoundError):
    """Raised when an event is not found."""

    def __init__(self, event_id: str) -> None:
        super().__init__(code=ErrorCode.EVENT_NOT_FOUND, message="Event not found")
        self.event_id = event_id


class TicketNotFoundError(NotFoundError):
    """Raised when no ticket matches a ticket id or transaction reference."""

    def __init__(self, reference: str | None) -> None:
        super().__init__(code=ErrorCode.TICKET_NOT_FOUND, message="Ticket not found")
        self.reference = reference


class InsufficientTicketsError(ConflictError):
    def __init__(self, available: int, requested: int) -> None:
        super().__init__(
            code=ErrorCode.INSUFFICIENT_TICKETS,
            message=f"Only {available} tickets left, {requested} requested",
        )
        self.available = available
        self.requested = requested


class EventNotOpenError(ConflictError):
    """Raised when an event is not published or has already started."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(code=code, message=message)


class TicketAlreadyUsedError(ConflictError):
    def __init__(self) -> None:
        super().__init__(code=ErrorCode.TICKET_ALREADY_USED, message="Ticket has already been used")


class TicketNotCancellableError(ConflictError):
    def __init__(self, status: str) -> None:
        super().__init__(
            code=ErrorCode.TICKET_NOT_CANCELLABLE,
            message=f"Ticket in status '{status}' cannot be cancelled",
        )
        self.status = status


class CancellationWindowClosedError(ConflictError):
    def __init__(self, cutoff_hours: int) -> None:
        super().__init__(
            code=ErrorCode.CANCELLATION_WINDOW_CLOSED,
            message=f"Tickets cannot be cancelled less than {cutoff_hours}h before the event",
        )


class PaymentGatewayError(UpstreamError):
    """The payment provider was unreachable, timed out or rejected the request.

    This means the payment could not be *initiated* or *verified*; it never
    means the payment itself failed.
    """

    def __init__(self, message: str, detail: object = None) -> None:
        super().__init__(code=ErrorCode.PAYMENT_PROVIDER_ERROR, message=message)
        self.detail = detail
