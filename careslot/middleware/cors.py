from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from careslot.core.config import settings


def configure_cors(app: FastAPI) -> None:
    """Comma-separated BACKEND_CORS_ORIGINS; no header is added when unset."""
    if not settings.BACKEND_CORS_ORIGINS:
        return
    origins = [o.strip() for o in settings.BACKEND_CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
