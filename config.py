# env vars + settings resolved once at startup
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

AUTH_MODES = ("header", "dev")


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: Optional[str] = None
    auth_mode: str = "header"
    dev_user_id: Optional[str] = None
    standings_refresh_seconds: int = Field(30, ge=1)
    log_level: str = "INFO"
    port: int = 8000


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def load_settings(env_path: Optional[str] = None) -> Settings:
    """
    Read settings from the environment (and a .env file when present).

    AUTH_MODE=dev lets requests without X-User-Id act as DEV_USER_ID;
    it is never switched on implicitly.
    """
    if env_path:
        load_dotenv(env_path)
    else:
        load_dotenv()

    auth_mode = os.getenv("AUTH_MODE", "header").strip().lower()
    if auth_mode not in AUTH_MODES:
        raise ValueError(f"AUTH_MODE must be one of {AUTH_MODES}, got {auth_mode!r}")

    dev_user_id = os.getenv("DEV_USER_ID") or None
    if auth_mode == "dev" and not dev_user_id:
        raise ValueError("AUTH_MODE=dev requires DEV_USER_ID")

    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        database_name=os.getenv("DATABASE_NAME") or None,
        auth_mode=auth_mode,
        dev_user_id=dev_user_id,
        standings_refresh_seconds=_int_env("STANDINGS_REFRESH_SECONDS", 30),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        port=_int_env("PORT", 8000),
    )
