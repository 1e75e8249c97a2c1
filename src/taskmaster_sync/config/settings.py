"""Application settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-level settings loaded from environment variables and ``.env``."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Webhook secrets; a provider without a secret rejects every webhook.
    github_webhook_secret: Optional[str] = None
    gitlab_webhook_secret: Optional[str] = None

    redis_url: str = "redis://localhost:6379/0"
    database_url: str = "sqlite:///taskmaster_sync.db"

    log_level: str = "INFO"
    config_path: str = "taskmaster-sync.yaml"

    def webhook_secrets(self) -> dict[str, Optional[str]]:
        return {
            "github": self.github_webhook_secret,
            "gitlab": self.gitlab_webhook_secret,
        }


def get_settings() -> Settings:
    return Settings()
