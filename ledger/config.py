from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

STORAGE_BACKENDS = ("memory", "json", "sqlite")


def _getenv(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None:
        raise ValueError(f"Missing required env var: {name}")
    return val


@dataclass(frozen=True)
class AppConfig:
    storage: str = "memory"
    db_path: Optional[str] = None
    admin_email: str = "admin@admin.com"
    admin_password: str = "666666"
    log_level: str = "INFO"
    groq_api_key: Optional[str] = None
    groq_model: Optional[str] = None


def load_config() -> AppConfig:
    load_dotenv()

    storage = _getenv("TAPFEED_STORAGE", "memory").strip().lower()
    if storage not in STORAGE_BACKENDS:
        raise ValueError(f"TAPFEED_STORAGE must be one of {', '.join(STORAGE_BACKENDS)}, got {storage!r}")

    return AppConfig(
        storage=storage,
        db_path=os.getenv("TAPFEED_DB_PATH") or None,
        admin_email=_getenv("TAPFEED_ADMIN_EMAIL", "admin@admin.com"),
        admin_password=_getenv("TAPFEED_ADMIN_PASSWORD", "666666"),
        log_level=_getenv("TAPFEED_LOG_LEVEL", "INFO").upper(),
        groq_api_key=os.getenv("GROQ_API_KEY") or None,
        groq_model=os.getenv("GROQ_MODEL") or None,
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
