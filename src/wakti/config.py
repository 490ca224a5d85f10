"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    owner_emails: str | None = None
    subscription_cache_namespace: str = "wakti_sub_cache"
    subscription_cache_ttl_seconds: float = 1800.0
    subscription_fetch_timeout_seconds: float = 3.0
    subscription_retry_delay_seconds: float = 3.0
    free_access_poll_seconds: float = 10.0
    free_access_window_hours: int = 24
    login_flag_window_seconds: float = 10.0
    account_route_prefixes: str = "/account,/settings/billing"
    max_recording_seconds: int = 7200
    recordings_bucket: str = "voice_recordings"
    recording_expiry_days: int = 10
    cache_path: str | None = None
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_owner_emails(raw: str | None) -> frozenset[str]:
    """Parse the comma-separated owner bypass list."""
    if raw is None:
        return frozenset()
    emails = {chunk.strip().lower() for chunk in raw.split(",")}
    return frozenset(email for email in emails if "@" in email)


def parse_route_prefixes(raw: str) -> tuple[str, ...]:
    """Parse comma-separated route prefixes, keeping only absolute paths."""
    prefixes = [chunk.strip() for chunk in raw.split(",")]
    return tuple(prefix for prefix in prefixes if prefix.startswith("/"))
