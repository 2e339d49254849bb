import os
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

class Settings:
    ENV: str = os.getenv("ENV", "local")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    EMAIL_BACKEND: str = os.getenv("EMAIL_BACKEND", "console")
    SMS_BACKEND: str = os.getenv("SMS_BACKEND", "console")

    # Database
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
    DATABASE_ECHO: bool = os.getenv("DATABASE_ECHO", "False").lower() == "true"
    DATABASE_POOL_SIZE: int = int(os.getenv("DATABASE_POOL_SIZE", 20))
    DATABASE_MAX_OVERFLOW: int = int(os.getenv("DATABASE_MAX_OVERFLOW", 10))

    # JWT (tokens are issued by the identity service; we only verify them)
    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me")
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 15))

    # App identity
    APP_NAME: str = os.getenv("APP_NAME", "CareSlot")
    SENDER_NAME: str = os.getenv("SENDER_NAME", "CareSlot Team")
    APP_URL: str = os.getenv("APP_URL", "http://localhost:3000")
    API_URL: str = os.getenv("API_URL", "http://localhost:8000")

    # Scheduling
    DEFAULT_CONSULTATION_MINUTES: int = int(os.getenv("DEFAULT_CONSULTATION_MINUTES", 45))
    BOOKING_BUFFER_MINUTES: int = int(os.getenv("BOOKING_BUFFER_MINUTES", 15))
    REFUND_WINDOW_HOURS: int = int(os.getenv("REFUND_WINDOW_HOURS", 12))
    DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "Africa/Lagos")
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "NGN")
    # Fallback fee (major units) until an admin stores one in system_settings
    CONSULTATION_PRICE: str = os.getenv("CONSULTATION_PRICE", "15000.00")
    # Legacy: a provider with no rules accepts any time when enabled
    ALLOW_UNRESTRICTED_AVAILABILITY: bool = (
        os.getenv("ALLOW_UNRESTRICTED_AVAILABILITY", "False").lower() == "true"
    )
    SLOT_CACHE_TTL_SECONDS: int = int(os.getenv("SLOT_CACHE_TTL_SECONDS", 300))

    # Payment gateway (Paystack)
    PAYSTACK_SECRET_KEY: Optional[str] = os.getenv("PAYSTACK_SECRET_KEY")
    PAYSTACK_BASE_URL: str = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")

    # Video rooms (Daily.co)
    DAILY_API_KEY: Optional[str] = os.getenv("DAILY_API_KEY")
    DAILY_API_BASE: str = os.getenv("DAILY_API_BASE", "https://api.daily.co/v1")

    GATEWAY_TIMEOUT_SECONDS: float = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", 10))

    # SMTP
    SMTP_HOST: Optional[str] = os.getenv("SMTP_HOST")
    SMTP_PORT: Optional[int] = int(os.getenv("SMTP_PORT", 587))
    SMTP_USER: Optional[str] = os.getenv("SMTP_USER")
    SMTP_PASSWORD: Optional[str] = os.getenv("SMTP_PASSWORD")

    # CORS
    BACKEND_CORS_ORIGINS: Optional[str] = os.getenv("BACKEND_CORS_ORIGINS")

    # SMS (Twilio)
    TWILIO_ACCOUNT_SID: Optional[str] = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN: Optional[str] = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_FROM_NUMBER: Optional[str] = os.getenv("TWILIO_FROM_NUMBER")

    # Redis / Celery
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CELERY_BROKER_URL: str = os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    ROOM_RETRY_INTERVAL_SECONDS: int = int(os.getenv("ROOM_RETRY_INTERVAL_SECONDS", 600))



settings = Settings()
