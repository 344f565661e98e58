import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[1] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_host: str = "0.0.0.0"
    api_port: int = 5000
    api_debug: bool = True
    cors_origins: Annotated[List[AnyHttpUrl] | List[str], NoDecode] = ["http://localhost:5173", "http://localhost:5000"]
    log_level: str = "INFO"

    aws_region: str = "us-east-1"
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    bedrock_model_id: str = "anthropic.claude-3-haiku-20240307-v1:0"
    bedrock_max_tokens: int = 1024
    llm_timeout_seconds: float = 60.0

    liveness_interval_seconds: float = 30.0
    action_item_interval_seconds: float = 30.0
    action_item_buffer_chars: int = 500
    history_context_turns: int = 20
    history_max_turns: int = 40
    history_trim_turns: int = 30

    assistant_name: str = "MeetingFlow AI"
    assistant_initials: str = "AI"
    assistant_color: str = "bg-purple-500"
    seed_default_user: bool = True

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_cors(cls, value: str | list[str]) -> list[str] | list[AnyHttpUrl]:
        if isinstance(value, str) and value.lstrip().startswith("["):
            return json.loads(value)
        if isinstance(value, str):
            items = [item.strip() for item in value.split(",") if item.strip()]
            default_value = cls.model_fields["cors_origins"].default  # type: ignore[index]
            return items or default_value
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
