"""Models package."""

__all__ = [
    "base",
    "user",
    "availability",
    "appointment",
    "notification",
    "system_setting",
]
