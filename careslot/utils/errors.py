"""Domain error taxonomy for the scheduling engine.

Each error carries the HTTP status the API layer renders it with, so services raise
plain domain exceptions and never import FastAPI.
"""
from starlette import status


class SchedulingError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "scheduling_error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class ValidationError(SchedulingError):
    """Invalid or missing input"""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class ActorMismatchError(ValidationError):
    """You are not allowed to act on this appointment"""
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class NotFoundError(ValidationError):
    """Resource not found"""
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class AvailabilityError(SchedulingError):
    """Selected time is not available"""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "not_available"


class ConflictError(SchedulingError):
    """This time slot is already booked"""
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class GatewayError(SchedulingError):
    """Payment or video provider request failed"""
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "gateway_error"


class RefundFailedError(GatewayError):
    """Cancellation aborted: refund failed. Please try again or contact support."""
    code = "refund_failed"


class PersistenceError(SchedulingError):
    """Storage is unavailable"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "persistence_error"


class PaymentRequiredError(ValidationError):
    """Payment is required before joining this consultation"""
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "payment_required"
