"""Runtime configuration for the ConvertHub client, CLI and webhook receiver."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_BASE = "https://api.converthub.com/v2"


class Settings(BaseSettings):
    """Environment-backed settings. Read only at the entry points."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # ConvertHub API
    api_key: str | None = Field(default=None, alias="CONVERTHUB_API_KEY")
    api_base: str = Field(default=DEFAULT_API_BASE, alias="CONVERTHUB_API_BASE")
    timeout_seconds: float = Field(default=60.0, alias="CONVERTHUB_TIMEOUT_SECONDS", gt=0)

    # Polling budgets; each call site has a different expected job duration
    poll_interval_seconds: float = Field(default=2.0, alias="POLL_INTERVAL_SECONDS", ge=0)
    max_poll_attempts: int = Field(default=150, alias="MAX_POLL_ATTEMPTS", ge=1)
    url_max_poll_attempts: int = Field(default=90, alias="URL_MAX_POLL_ATTEMPTS", ge=1)
    upload_max_poll_attempts: int = Field(default=180, alias="UPLOAD_MAX_POLL_ATTEMPTS", ge=1)
    watch_max_poll_attempts: int = Field(default=600, alias="WATCH_MAX_POLL_ATTEMPTS", ge=1)

    chunk_size_mb: int = Field(default=5, alias="CHUNK_SIZE_MB", ge=1, le=100)

    # Webhook receiver side effects
    auto_download: bool = Field(default=False, alias="AUTO_DOWNLOAD")
    download_dir: Path = Field(default=Path("downloads"), alias="DOWNLOAD_DIR")
    notification_email: str | None = Field(default=None, alias="NOTIFICATION_EMAIL")
    admin_email: str | None = Field(default=None, alias="ADMIN_EMAIL")
    webhook_log_file: Path = Field(default=Path("webhook_events.log"), alias="WEBHOOK_LOG_FILE")
    persistence_hook_url: str | None = Field(default=None, alias="PERSISTENCE_HOOK_URL")

    # Outbound mail (notifications are skipped when SMTP_HOST is unset)
    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USERNAME")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=True, alias="SMTP_USE_TLS")
    mail_from: str = Field(default="noreply@localhost", alias="MAIL_FROM")
    alert_mail_from: str = Field(default="alerts@localhost", alias="ALERT_MAIL_FROM")

    # FastAPI
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8090, alias="APP_PORT")
    debug: bool = Field(default=False, alias="DEBUG")

    @property
    def chunk_size_bytes(self) -> int:
        return self.chunk_size_mb * 1024 * 1024

    @property
    def mail_enabled(self) -> bool:
        return bool(self.smtp_host)


@lru_cache
def get_settings() -> Settings:
    return Settings()


@dataclass(frozen=True)
class RunOptions:
    """Options one CLI invocation runs with, resolved once from flags and settings."""

    api_key: str
    poll_interval_seconds: float
    max_attempts: int
    auto_download: bool = False
    output_path: Path | None = None
    force: bool = False
