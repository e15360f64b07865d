"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    chat_database_path: Path = Field(
        default_factory=lambda: Path("data/chats.db"),
        validation_alias=AliasChoices("CHAT_DATABASE_PATH", "chat_db"),
    )
    conversation_log_dir: Path = Field(
        default_factory=lambda: Path("logs/conversations"),
        validation_alias=AliasChoices(
            "CONVERSATION_LOG_DIR",
            "conversation_log_dir",
        ),
    )
    default_model: str = Field(
        default="gpt-4o",
        validation_alias=AliasChoices("DEFAULT_MODEL", "default_model"),
    )
    default_system_prompt: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DEFAULT_SYSTEM_PROMPT", "system_prompt"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("PROVIDER_TIMEOUT", "timeout"),
        ge=1,
    )

    # Context trimming
    max_chars_per_message: int = Field(
        default=4000,
        ge=1,
        validation_alias=AliasChoices(
            "MAX_CHARS_PER_MESSAGE", "max_chars_per_message"
        ),
    )
    min_tail_messages: int = Field(
        default=8,
        ge=0,
        validation_alias=AliasChoices("MIN_TAIL_MESSAGES", "min_tail_messages"),
    )
    approx_chars_per_token: int = Field(
        default=4,
        ge=1,
        validation_alias=AliasChoices(
            "APPROX_CHARS_PER_TOKEN", "approx_chars_per_token"
        ),
    )
    default_context_tokens: int = Field(
        default=12000,
        ge=1,
        validation_alias=AliasChoices(
            "DEFAULT_CONTEXT_TOKENS", "default_context_tokens"
        ),
    )
    context_utilization: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        validation_alias=AliasChoices("CONTEXT_UTILIZATION", "context_utilization"),
    )
    min_effective_tokens: int = Field(
        default=2000,
        ge=1,
        validation_alias=AliasChoices(
            "MIN_EFFECTIVE_TOKENS", "min_effective_tokens"
        ),
    )

    # Tool guidance overrides
    web_search_system_prompt: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "BROWSERLESS_SYSTEM_PROMPT", "web_search_system_prompt"
        ),
    )
    googlepse_system_prompt: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "GOOGLEPSE_SYSTEM_PROMPT", "googlepse_system_prompt"
        ),
    )
    image_system_prompt: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("IMAGE_SYSTEM_PROMPT", "image_system_prompt"),
    )

    # Bootstrap provider connections, inserted when the registry has none
    openai_api_key: SecretStr | None = Field(
        default=None, validation_alias=AliasChoices("OPENAI_API_KEY")
    )
    openai_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.openai.com/v1"),
        validation_alias=AliasChoices("OPENAI_BASE_URL", "openai_base_url"),
    )
    openrouter_api_key: SecretStr | None = Field(
        default=None, validation_alias=AliasChoices("OPENROUTER_API_KEY")
    )
    openrouter_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://openrouter.ai/api/v1"),
        validation_alias=AliasChoices("OPENROUTER_BASE_URL", "openrouter_base_url"),
    )
    openrouter_app_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices(
            "OPENROUTER_APP_URL",
            "HTTP_REFERER",
            "http_referer",
        ),
    )
    openrouter_app_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OPENROUTER_APP_TITLE", "X_TITLE"),
    )
    ollama_base_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("OLLAMA_BASE_URL", "ollama_base_url"),
    )

    def char_budget(self, context_window_tokens: int | None) -> int:
        """Return the trim budget in characters for a model context window."""

        tokens = context_window_tokens or self.default_context_tokens
        effective = max(
            self.min_effective_tokens,
            int(tokens * self.context_utilization),
        )
        return effective * self.approx_chars_per_token


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["PROJECT_ROOT", "Settings", "get_settings"]
