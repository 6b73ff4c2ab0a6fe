"""Configuration management for the appointment sync engine."""

from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils.exceptions import ConfigurationError

load_dotenv()


class GoogleMirrorConfig(BaseSettings):
    """Secondary Google Calendar mirror configuration."""

    enabled: bool = Field(default=False, validation_alias="GOOGLE_MIRROR_ENABLED")
    access_token: Optional[str] = Field(None, validation_alias="GOOGLE_ACCESS_TOKEN")
    calendar_id: str = Field(default="primary", validation_alias="GOOGLE_CALENDAR_ID")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_parse_none_str="",  # Treat empty string as None
    )


class AppConfig(BaseSettings):
    """Application configuration."""

    # Appointment service
    api_url: Optional[str] = Field(None, validation_alias="APPOINTMENTS_API_URL")
    api_token: Optional[str] = Field(None, validation_alias="APPOINTMENTS_API_TOKEN")
    api_timeout: float = Field(default=30.0, validation_alias="API_TIMEOUT")

    google: GoogleMirrorConfig = Field(default_factory=GoogleMirrorConfig)

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, validation_alias="LOG_FILE")

    # Calendar behaviour
    timezone: str = Field(default="Europe/Istanbul", validation_alias="CALENDAR_TIMEZONE")
    conflict_debounce_ms: int = Field(default=300, validation_alias="CONFLICT_DEBOUNCE_MS")
    window_buffer_days: int = Field(default=7, validation_alias="WINDOW_BUFFER_DAYS")

    # Layout
    hour_height: float = Field(default=60.0, validation_alias="HOUR_HEIGHT")
    min_block_hours: float = Field(default=0.5, validation_alias="MIN_BLOCK_HOURS")
    month_preview_limit: int = Field(default=2, validation_alias="MONTH_PREVIEW_LIMIT")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    def require_api(self) -> tuple[str, str]:
        """Return (api_url, api_token) or raise if either is missing."""
        if not self.api_url or not self.api_token:
            raise ConfigurationError(
                "APPOINTMENTS_API_URL and APPOINTMENTS_API_TOKEN must be set"
            )
        return self.api_url.rstrip("/"), self.api_token


class AccessConfig:
    """Visibility access rules loaded from YAML."""

    DEFAULT_ROLES = ["admin", "başkan"]
    DEFAULT_DEPARTMENTS = ["BAŞKAN"]

    def __init__(self, config_path: Path = Path("calendar_config.yaml")):
        self.privileged_roles: frozenset[str] = frozenset(
            r.casefold() for r in self.DEFAULT_ROLES
        )
        self.privileged_departments: frozenset[str] = frozenset(
            d.casefold() for d in self.DEFAULT_DEPARTMENTS
        )

        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            access = data.get("access", {})
            if not isinstance(access, dict):
                raise ConfigurationError(f"'access' in {config_path} must be a mapping")
            if "privileged_roles" in access:
                self.privileged_roles = frozenset(
                    str(r).casefold().strip() for r in access["privileged_roles"] or []
                )
            if "privileged_departments" in access:
                self.privileged_departments = frozenset(
                    str(d).casefold().strip() for d in access["privileged_departments"] or []
                )


# Global config instances
config = AppConfig()
access_config = AccessConfig()
