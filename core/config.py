"""
core/config.py -- Runtime settings for the parts catalog backend.

Every environment read goes through Settings (pydantic-settings); modules
never touch os.environ themselves. Settings fields map one-to-one onto
upper-case env vars (session_ttl_days -> SESSION_TTL_DAYS) and may also come
from a .env file next to the process.

get_settings() is cached with lru_cache, so the environment is parsed once
per process. AppConfig is the frozen view built from it at startup: the
session authority and the routers receive durations as timedelta and the
role/posisi/jenis enumerations as tuples, instead of re-reading Settings.

Security notes:
  [M6] A SECRET_KEY under 32 characters is refused; the session JWTs are
       only as strong as the key.

  [M7] Without DEBUG=true a missing SECRET_KEY stops startup. With DEBUG=true
       a random key is generated and every restart logs all sessions out.

Layer rule: core/ may not import from api/, auth/ or catalog/.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("partkatalog.config")

ROLES: tuple[str, ...] = ("user", "admin", "superadmin", "partshop")
POSISI_VALUES: tuple[str, ...] = ("Engine", "Powertrain", "Chassis/Tool", "Electrical", "Cabin/Rear Body")
JENIS_VALUES: tuple[str, ...] = ("Truck Heavy-duty", "Truck Medium-duty", "Truck Light-duty")


class Settings(BaseSettings):
    """Environment-backed settings. Every field has a default except the
    production SECRET_KEY, which validate_secret_key() enforces.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    environment: Literal["development", "production"] = "development"
    # "" means unset; validate_secret_key() replaces or rejects it.
    secret_key: str = ""
    database_url: str = "sqlite:///partkatalog.db"
    api_prefix: str = "/api"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_ttl_days: int = 7
    device_lock_minutes: int = 15

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_origins: list[str] = ["http://localhost:5173", "http://localhost:5174"]
    upload_dir: str = "public/uploads"
    max_upload_bytes: int = 10 * 1024 * 1024

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("session_ttl_days")
    @classmethod
    def validate_session_ttl(cls, v: int) -> int:
        if v < 1 or v > 365:
            raise ValueError("SESSION_TTL_DAYS must be between 1 and 365")
        return v

    @field_validator("device_lock_minutes")
    @classmethod
    def validate_device_lock(cls, v: int) -> int:
        if v < 0 or v > 24 * 60:
            raise ValueError("DEVICE_LOCK_MINUTES must be between 0 and 1440")
        return v

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """[M6] [M7] Generate a key in debug mode, otherwise require one of 32+ chars."""
        if not self.secret_key and self.debug:
            self.secret_key = secrets.token_hex(32)
            logger.warning("DEBUG: generated a throwaway SECRET_KEY; sessions end on restart.")
        elif not self.secret_key:
            raise ValueError("SECRET_KEY is not set. Export SECRET_KEY (32+ chars) or run with DEBUG=true.")
        if len(self.secret_key) < 32:
            raise ValueError(f"SECRET_KEY is {len(self.secret_key)} characters; at least 32 are required.")
        return self

    @property
    def secure_cookies(self) -> bool:
        """Session cookies carry the Secure flag only outside local/dev."""
        return self.environment == "production"


@dataclass(frozen=True)
class AppConfig:
    """Immutable runtime configuration passed to the session authority and routers."""

    secret_key: str
    session_ttl: timedelta
    device_lock_window: timedelta
    secure_cookies: bool
    allowed_origins: frozenset[str]
    roles: tuple[str, ...] = ROLES
    posisi_values: tuple[str, ...] = POSISI_VALUES
    jenis_values: tuple[str, ...] = JENIS_VALUES

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppConfig":
        return cls(
            secret_key=settings.secret_key,
            session_ttl=timedelta(days=settings.session_ttl_days),
            device_lock_window=timedelta(minutes=settings.device_lock_minutes),
            secure_cookies=settings.secure_cookies,
            allowed_origins=frozenset(settings.allowed_origins),
        )


@lru_cache
def get_settings() -> Settings:
    """Parse the environment once and return the cached Settings.

    Tests that change env vars must call get_settings.cache_clear() first.
    """
    return Settings()
