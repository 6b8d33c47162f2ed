from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OpenAISettings(BaseModel):
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 15.0
    max_tokens: int = Field(default=500, ge=1)
    max_attempts: int = Field(default=3, ge=1)


class CasSettings(BaseModel):
    enabled: bool = True
    api_url: str = "https://api.cas.chat"
    timeout_seconds: float = 5.0
    user_agent: str = "groupwarden"


class DetectionSettings(BaseModel):
    deadline_seconds: float = Field(default=10.0, gt=0)
    auto_ban_threshold: int = Field(default=85, ge=0, le=100)
    review_threshold: int = Field(default=70, ge=0, le=100)
    training_mode: bool = False
    cache_ttl_seconds: float = Field(default=3600.0, gt=0)
    cache_max_entries: int = Field(default=10_000, ge=1)
    weights: dict[str, float] = Field(default_factory=dict)

    openai_enabled: bool = True
    veto_mode: bool = True
    min_message_length: int = Field(default=10, ge=0)
    check_short_messages: bool = False
    history_context: bool = True
    history_count: int = Field(default=5, ge=0)
    system_prompt: Optional[str] = None

    stop_words: list[str] = Field(default_factory=list)
    stop_words_confidence: int = Field(default=90, ge=0, le=100)
    spacing_ratio_threshold: float = Field(default=0.7, gt=0, le=1)
    spacing_confidence: int = Field(default=70, ge=0, le=100)
    invisible_chars_confidence: int = Field(default=80, ge=0, le=100)
    omni_enabled: bool = False
    cas: CasSettings = CasSettings()

    @model_validator(mode="after")
    def _check_bands(self) -> "DetectionSettings":
        if self.review_threshold > self.auto_ban_threshold:
            raise ValueError("review_threshold must not exceed auto_ban_threshold")
        return self


class ModerationSettings(BaseModel):
    warning_threshold: int = Field(default=3, ge=1)
    auto_ban_enabled: bool = True
    warning_expiry_days: int = Field(default=90, ge=1)
    cleanup_delay_seconds: float = Field(default=15.0, ge=0)
    cleanup_dedup_window_seconds: float = Field(default=30.0, ge=0)
    retrain_debounce_seconds: float = Field(default=300.0, ge=0)
    admin_channel: str = "admins"
    admin_chat_id: Optional[int] = Field(default=None, description="Telegram chat that receives admin channel notifications.")


class StorageSettings(BaseModel):
    sqlite_path: str = "groupwarden.db"
    media_dir: str = "media"


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")
    use_json: bool = Field(default=False, description="Use JSON format instead of colored output")


class BotSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GROUPWARDEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    telegram_token: str = Field(..., description="Telegram bot token.")
    openai: OpenAISettings = OpenAISettings()
    detection: DetectionSettings = DetectionSettings()
    moderation: ModerationSettings = ModerationSettings()
    storage: StorageSettings = StorageSettings()
    logging: LoggingSettings = LoggingSettings()
