"""Application configuration using Pydantic settings."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_MODELS = ("deepseek-chat", "deepseek-reasoner")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Chat backend
    api_base_url: str = Field(
        "http://localhost:8080/api", alias="CHAT_API_BASE_URL",
        description="Base URL of the chat backend API. The backend must be reachable before the first request.",
    )
    model: str = Field(
        "deepseek-chat", alias="CHAT_MODEL",
        description="Model name sent with every chat request and recorded on new conversations.",
    )
    enable_streaming: bool = Field(
        True, alias="CHAT_ENABLE_STREAMING",
        description="Use the SSE endpoint (/chat/stream). False = one-shot /chat request per message.",
    )
    timeout: float = Field(
        60.0, alias="CHAT_TIMEOUT",
        description="Read timeout in seconds for backend calls. Applies per read while streaming.",
    )
    connect_timeout: float = Field(
        10.0, alias="CHAT_CONNECT_TIMEOUT",
        description="Timeout in seconds for establishing the connection to the backend.",
    )
    locale: str = Field(
        "en", alias="CHAT_LOCALE",
        description="Locale for user-facing strings: en or zh.",
    )

    # Message history cache
    history_cache_ttl: int = Field(
        300, alias="HISTORY_CACHE_TTL",
        description="TTL in seconds for cached conversation message history used when switching conversations.",
    )
    history_cache_maxsize: int = Field(
        100, alias="HISTORY_CACHE_MAXSIZE",
        description="Max number of conversations whose history is cached. LRU eviction when exceeded.",
    )

    # Logging
    log_level: str = Field(
        "INFO", alias="LOG_LEVEL",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL.",
    )
    log_file: str = Field(
        "", alias="LOG_FILE",
        description="Path to log file for file-based logging with rotation. Empty = console only.",
    )
    log_file_max_bytes: int = Field(
        10_485_760, alias="LOG_FILE_MAX_BYTES",
        description="Max size in bytes per log file before rotation. Default: 10 MB.",
    )
    log_file_backup_count: int = Field(
        5, alias="LOG_FILE_BACKUP_COUNT",
        description="Number of rotated backup log files to keep.",
    )

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: str) -> str:
        if v not in KNOWN_MODELS:
            raise ValueError(f"model must be one of {', '.join(KNOWN_MODELS)}, got: {v}")
        return v

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
