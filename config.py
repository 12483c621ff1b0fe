"""
Application Settings

Environment-driven configuration. Values are read from the process environment
after loading a local .env file, and gathered into a single Settings object
that the app factory receives.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    database_url: Optional[str] = field(default_factory=lambda: os.getenv("DATABASE_URL"))
    database_name: Optional[str] = field(default_factory=lambda: os.getenv("DATABASE_NAME"))

    # Push credentials: inline service-account JSON wins over a file path
    firebase_service_account: Optional[str] = field(default_factory=lambda: os.getenv("FIREBASE_SERVICE_ACCOUNT"))
    firebase_credentials_path: Optional[str] = field(default_factory=lambda: os.getenv("FIREBASE_CREDENTIALS_PATH"))

    api_prefix: str = field(default_factory=lambda: os.getenv("API_PREFIX", "/api"))
    cors_origins: List[str] = field(default_factory=lambda: _env_list("CORS_ORIGINS", "*"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    seed_on_startup: bool = field(default_factory=lambda: _env_bool("SEED_ON_STARTUP", True))

    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", 8000)))


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
