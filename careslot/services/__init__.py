"""Service layer package."""

__all__ = [
    "slot_calculator",
    "identity_service",
    "availability_service",
    "booking_service",
    "appointment_state",
    "payment_gateway",
    "payment_service",
    "video_service",
    "notification_service",
    "email_service",
    "sms_service",
]
