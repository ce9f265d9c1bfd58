"""
Sky Store settings
Environment / .env driven configuration for the API and the Telegram notifier
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )

    # Telegram notifier; both must be set or notifications are disabled
    bot_token: Optional[str] = Field(None, alias="BOT_TOKEN")
    chat_id: Optional[str] = Field(None, alias="CHAT_ID")

    data_dir: Path = Field(Path("."), alias="DATA_DIR")
    uploads_dir: Optional[Path] = Field(None, alias="UPLOADS_DIR")
    static_dir: Path = Field(Path("."), alias="STATIC_DIR")

    host: str = Field("0.0.0.0", alias="HOST")
    port: int = Field(3000, alias="PORT")
    # comma separated ("*" or "https://a.com,https://b.com") or a JSON list
    cors_origins: Annotated[List[str], NoDecode] = Field(["*"], alias="CORS_ORIGINS")

    store_name: str = Field("Sky Store", alias="STORE_NAME")
    timezone: str = Field("Asia/Baghdad", alias="STORE_TIMEZONE")
    country_code: str = Field("964", alias="COUNTRY_CODE")

    max_upload_bytes: int = Field(50 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")

    notify_max_attempts: int = Field(5, ge=1, alias="NOTIFY_MAX_ATTEMPTS")
    notify_backoff_base: float = Field(1.0, ge=0, alias="NOTIFY_BACKOFF_BASE")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, v):
        if not isinstance(v, str):
            return v
        v = v.strip()
        if v.startswith("["):
            return json.loads(v)
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    @property
    def uploads_path(self) -> Path:
        return self.uploads_dir or self.data_dir / "uploads"

    @property
    def notifier_enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)


@lru_cache
def get_settings() -> Settings:
    return Settings()
