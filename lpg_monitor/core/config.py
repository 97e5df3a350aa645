"""
LPG Tank Monitor - Configuration
All settings loaded from environment variables
"""

from datetime import timedelta
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str

    # SOAP telemetry service
    soap_url: str = "https://webvision.digimatic.it/api/2/service.php"
    soap_action: str = "https://webvision.digimatic.it/api/2/TerminalGetInfo"
    soap_username: str = ""
    soap_password: str = ""
    soap_timeout_seconds: float = 30.0
    level_variable_name: str = "LIVELLO"

    # Polling
    terminal_ids: str = ""  # Comma-separated list of extra terminals to poll
    poll_interval_seconds: int = 3600

    # SMTP (empty host disables alarm emails)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_tls: bool = True
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_sender: str = ""
    smtp_timeout_seconds: float = 10.0

    # Alarms
    alarm_throttle_minutes: int = 60

    # Consumption
    min_readings_per_day: int = 3
    consumption_window_days: int = 30
    known_terminal_lookback_days: int = 60
    consumption_cache_ttl_seconds: int = 60

    log_level: str = "INFO"

    @property
    def terminal_ids_list(self) -> list[str]:
        """Parse terminal IDs from comma-separated string."""
        if not self.terminal_ids:
            return []
        return [tid.strip() for tid in self.terminal_ids.split(",") if tid.strip()]

    @property
    def alarm_throttle(self) -> timedelta:
        return timedelta(minutes=self.alarm_throttle_minutes)

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host)

    class Config:
        env_file = ".env"  # Fallback for local development
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
