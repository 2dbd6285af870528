"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .prompts import TUTOR_SYSTEM_PROMPT

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    # Optional so the app can boot; chat requests are rejected while unset.
    anthropic_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("ANTHROPIC_API_KEY", "anthropic_api_key"),
    )
    anthropic_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.anthropic.com/v1"),
        validation_alias=AliasChoices("ANTHROPIC_BASE_URL", "base_url"),
    )
    anthropic_version: str = Field(
        default="2023-06-01",
        validation_alias=AliasChoices("ANTHROPIC_VERSION", "anthropic_version"),
    )
    default_model: str = Field(
        default="claude-haiku-4-5-20251001",
        validation_alias=AliasChoices("ANTHROPIC_MODEL", "default_model"),
    )
    max_tokens: int = Field(
        default=1024,
        ge=1,
        validation_alias=AliasChoices("ANTHROPIC_MAX_TOKENS", "max_tokens"),
    )
    system_prompt: str = Field(
        default=TUTOR_SYSTEM_PROMPT,
        validation_alias=AliasChoices("CHAT_SYSTEM_PROMPT", "system_prompt"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("ANTHROPIC_TIMEOUT", "timeout"),
        ge=1,
    )
    chat_database_path: Path = Field(
        default_factory=lambda: Path("data/chat.db"),
        validation_alias=AliasChoices("CHAT_DATABASE_PATH", "chat_db"),
    )

    max_history: int = Field(
        default=50,
        ge=1,
        validation_alias=AliasChoices("CHAT_MAX_HISTORY", "max_history"),
    )
    max_message_length: int = Field(
        default=5000,
        ge=1,
        validation_alias=AliasChoices(
            "CHAT_MAX_MESSAGE_LENGTH",
            "max_message_length",
        ),
    )

    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        validation_alias=AliasChoices("ALLOWED_ORIGINS", "allowed_origins"),
        description="Origins accepted on state-changing requests.",
    )
    allowed_image_media_types: list[str] = Field(
        default_factory=lambda: ["image/png", "image/jpeg"],
        validation_alias=AliasChoices(
            "ALLOWED_IMAGE_MEDIA_TYPES",
            "allowed_image_media_types",
        ),
    )

    @property
    def api_key_configured(self) -> bool:
        if self.anthropic_api_key is None:
            return False
        return bool(self.anthropic_api_key.get_secret_value())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["PROJECT_ROOT", "Settings", "get_settings"]
