"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    openai_api_key: str = Field(..., alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o", alias="OPENAI_MODEL")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    openai_max_output_tokens: int = Field(default=4000, alias="OPENAI_MAX_OUTPUT_TOKENS")
    openai_temperature: float = Field(default=0.3, alias="OPENAI_TEMPERATURE")
    transcription_model: str = Field(default="whisper-1", alias="TRANSCRIPTION_MODEL")
    transcription_language: str = Field(default="ru", alias="TRANSCRIPTION_LANGUAGE")

    telegram_bot_token: str = Field(..., alias="TELEGRAM_BOT_TOKEN")
    telegram_base_url: str = Field(default="https://api.telegram.org", alias="TELEGRAM_BASE_URL")
    telegram_poll_timeout_seconds: int = Field(default=30, alias="TELEGRAM_POLL_TIMEOUT_SECONDS")

    google_sheets_spreadsheet_id: str = Field(default="", alias="GOOGLE_SHEETS_SPREADSHEET_ID")
    google_sheets_default_range: str = Field(default="A:Z", alias="GOOGLE_SHEETS_DEFAULT_RANGE")
    google_sheets_access_token: str = Field(default="", alias="GOOGLE_SHEETS_ACCESS_TOKEN")
    executors_spreadsheet_id: str = Field(default="", alias="EXECUTORS_SPREADSHEET_ID")
    executors_range: str = Field(default="A:H", alias="EXECUTORS_RANGE")
    # Comma-separated executor codes used when no executors sheet is configured.
    executor_codes: str = Field(default="", alias="EXECUTOR_CODES")

    database_path: Path = Field(default=Path("taskbot.db"), alias="DATABASE_PATH")
    files_dir: Path = Field(default=Path("storage") / "telegram_files", alias="FILES_DIR")
    public_files_base_url: str = Field(default="", alias="PUBLIC_FILES_BASE_URL")

    user_timezone: str = Field(default="Europe/Moscow", alias="USER_TIMEZONE")
    request_timeout_seconds: float = Field(default=120.0, alias="REQUEST_TIMEOUT_SECONDS")
    max_iterations: int = Field(default=5, alias="MAX_ITERATIONS")
    context_ttl_seconds: int = Field(default=3600, alias="CONTEXT_TTL_SECONDS")
    # Send previous_response_id on tool-bearing turns. Off: every turn is independent.
    chain_tool_turns: bool = Field(default=False, alias="CHAIN_TOOL_TURNS")
    media_group_window_seconds: float = Field(default=2.0, alias="MEDIA_GROUP_WINDOW_SECONDS")
    media_group_max_items: int = Field(default=3, alias="MEDIA_GROUP_MAX_ITEMS")
    media_group_sweep_interval_seconds: float = Field(default=0.5, alias="MEDIA_GROUP_SWEEP_INTERVAL_SECONDS")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def executor_codes(settings: Settings) -> list[str]:
    """Return the fallback executor codes from EXECUTOR_CODES, in order."""

    return [code.strip() for code in settings.executor_codes.split(",") if code.strip()]
