import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> str | None:
    """Find .env file, preferring .env.local for local development."""
    for env_file in [".env.local", ".env"]:
        for base in [".", os.environ.get("REPO_ROOT", "")]:
            if base:
                path = Path(base) / env_file
                if path.exists():
                    return str(path)
    return None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./local.db"

    # Risk classifier (OpenAI vision model)
    openai_api_key: str = ""
    openai_model_vision: str = "gpt-4o-mini"
    classifier_timeout_s: float = 10.0

    # Dispatch
    cooldown_hours: int = 72
    default_sla_hours: int = 24

    # SLA monitor
    run_sla_monitor: bool = True
    sla_sweep_interval_s: float = 60.0

    # Notifications
    notify_webhook_url: str = ""
    notify_timeout_s: float = 2.0

    # CORS
    cors_origin: str = ""


settings = Settings()
