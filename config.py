"""
Application settings

Everything the service reads from the environment is collected here once, at
process start, and handed to ``main.create_app``.
"""

import logging
import os
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "mp_stationery"

    jwt_secret: str = "devsecret"
    jwt_expires_days: int = Field(7, ge=1)
    cookie_expires_days: int = Field(7, ge=1)

    frontend_url: str = "http://localhost:5173"
    allowed_origins: List[str] = ["http://localhost:5173", "http://localhost:5000"]
    upload_dir: str = "public/uploads"

    email_host: Optional[str] = None
    email_port: int = 587
    email_user: Optional[str] = None
    email_pass: Optional[str] = None
    email_secure: bool = False
    email_timeout: float = 10.0

    environment: str = "development"
    log_level: str = "INFO"
    port: int = 8000

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("ALLOWED_ORIGINS")
        values = {
            "database_url": os.getenv("DATABASE_URL"),
            "database_name": os.getenv("DATABASE_NAME"),
            "jwt_secret": os.getenv("JWT_SECRET"),
            "jwt_expires_days": os.getenv("JWT_EXPIRES_DAYS"),
            "cookie_expires_days": os.getenv("COOKIE_EXPIRES_DAYS"),
            "frontend_url": os.getenv("FRONTEND_URL"),
            "allowed_origins": [o.strip() for o in origins.split(",") if o.strip()] if origins else None,
            "upload_dir": os.getenv("UPLOAD_DIR"),
            "email_host": os.getenv("EMAIL_HOST"),
            "email_port": os.getenv("EMAIL_PORT"),
            "email_user": os.getenv("EMAIL_USER"),
            "email_pass": os.getenv("EMAIL_PASS"),
            "email_secure": _env_bool("EMAIL_SECURE"),
            "email_timeout": os.getenv("EMAIL_TIMEOUT"),
            "environment": os.getenv("ENVIRONMENT") or os.getenv("NODE_ENV"),
            "log_level": os.getenv("LOG_LEVEL"),
            "port": os.getenv("PORT"),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})


def configure_logging(settings: Settings) -> None:
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.is_production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
