from __future__ import annotations

import logging
import os
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

LOG_FORMAT = "[%(asctime)s] %(levelname)s in %(module)s: %(message)s"

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    admin_password: str | None = None
    admin_password_hash: str | None = None
    admin_session_hours: int = Field(default=8, ge=1)
    slot_capacity: int = Field(default=5, ge=0)
    export_locale: Literal["en", "zh"] = "en"
    export_label: str = "schedule"
    log_level: str = "INFO"
    environment: str = "local"


def get_settings() -> Settings:
    # Not cached; read from the environment on every call.
    raw = {
        "admin_password": os.getenv("ADMIN_PASSWORD") or None,
        "admin_password_hash": os.getenv("ADMIN_PASSWORD_HASH") or None,
        "admin_session_hours": os.getenv("ADMIN_SESSION_HOURS", "8"),
        "slot_capacity": os.getenv("SLOT_CAPACITY", "5"),
        "export_locale": os.getenv("EXPORT_LOCALE", "en"),
        "export_label": os.getenv("EXPORT_LABEL", "schedule"),
        "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
        "environment": os.getenv("ENVIRONMENT", "local"),
    }
    try:
        return Settings(**raw)
    except ValidationError as exc:
        invalid = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}
        for name in sorted(invalid):
            logger.warning("Ignoring invalid %s=%r, using the default", name.upper(), raw[name])
        return Settings(**{k: v for k, v in raw.items() if k not in invalid})


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=level or os.getenv("LOG_LEVEL", "INFO").upper(), format=LOG_FORMAT)
