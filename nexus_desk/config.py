import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(_PROJECT_ROOT / ".env")


class Settings(BaseSettings):
    app_name: str = "nexus-desk"
    log_level: str = Field(default="INFO")

    database_url: str = Field(default="sqlite+aiosqlite:///./nexus_desk.db")
    chroma_persist_dir: str = Field(default="./chroma_data")

    anthropic_api_key: Optional[str] = Field(default=None)
    ai_model: str = Field(default="claude-3-5-sonnet-20241022")
    ai_max_tokens: int = Field(default=1000)
    ai_temperature: float = Field(default=0.7)
    ai_timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound on a single follow-up model call before the fallback reply is used.",
    )
    ai_max_history: int = Field(
        default=50,
        description="Most recent chat messages forwarded to the model.",
    )
    summary_timeout_seconds: float = Field(default=20.0)

    undo_window_seconds: float = Field(
        default=10.0,
        description="How long a deleted appointment can be restored.",
    )
    quota_timezone: str = Field(
        default="UTC",
        description="IANA zone in which the monthly ticket quota resets.",
    )
    default_language: str = Field(default="en")
    knowledge_top_k: int = Field(default=5)

    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
