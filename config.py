"""
Application settings, read from the environment (prefix ``VIDSHARE_``) or a
local ``.env`` file.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-me-in-production"

LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8",
        env_prefix="VIDSHARE_", case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "vidshare"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: LogLevel = "INFO"
    api_prefix: str = "/api/v1"
    cors_origins: List[str] = ["*"]

    # ── MongoDB ──────────────────────────────────────────────────────────
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "vidshare"

    # ── Auth ─────────────────────────────────────────────────────────────
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expires_in: int = 60 * 60 * 24
    bcrypt_rounds: int = 12

    # ── Pagination ───────────────────────────────────────────────────────
    default_page_size: int = 10
    max_page_size: int = 100

    # ── Aliyun VOD ───────────────────────────────────────────────────────
    vod_access_key_id: Optional[str] = None
    vod_access_key_secret: Optional[str] = None
    vod_region: str = "cn-shanghai"
    vod_endpoint: Optional[str] = None
    vod_timeout: float = 10.0

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @property
    def vod_url(self) -> str:
        if self.vod_endpoint:
            return self.vod_endpoint
        return f"https://vod.{self.vod_region}.aliyuncs.com"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
