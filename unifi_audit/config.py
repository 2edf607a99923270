"""Settings for the UniFi security audit, read from the environment or ``.env``.

Variable names match field names (case-insensitive, no prefix). The
controller password is masked whenever settings are rendered.
"""

import logging
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide audit settings. Per-site audit options live in the database."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # HTTP API
    audit_server_host: str = Field(default="0.0.0.0", description="Server bind host")
    audit_server_port: int = Field(default=8080, description="Server port")
    audit_log_level: str = Field(default="INFO", description="Logging level")

    # Controller connection
    unifi_controller_url: Optional[str] = Field(default=None, description="Controller base URL, e.g. https://192.168.1.1")
    unifi_username: Optional[str] = Field(default=None, description="Local admin account used for read access")
    unifi_password: Optional[str] = Field(default=None, description="Password for the admin account (masked in output)")
    unifi_site: str = Field(default="default", description="Site audited when a request names none")
    unifi_verify_ssl: bool = Field(default=False, description="Verify the controller certificate (usually self-signed)")
    unifi_timeout: int = Field(default=30, description="Per-request controller timeout in seconds")

    # Evidence collection
    audit_fetch_concurrency: int = Field(
        default=4,
        description="Maximum number of controller fetches issued concurrently"
    )

    # Device fingerprint database
    fingerprint_url: Optional[str] = Field(
        default=None,
        description="URL of the device fingerprint database (JSON)"
    )
    fingerprint_refresh_hours: int = Field(
        default=24,
        description="Hours before the cached fingerprint database is refreshed"
    )
    fingerprint_timeout: int = Field(
        default=10,
        description="Timeout for fingerprint database downloads in seconds"
    )

    # Third-party DNS detection
    third_party_dns_query_timeout: float = Field(
        default=1.0,
        description="Timeout in seconds for each Pi-hole/AdGuard Home detection request"
    )

    # Port inactivity defaults (overridable per site)
    audit_default_unused_port_days: int = Field(
        default=15,
        description="Days a port with a default name may stay down before it is flagged"
    )
    audit_default_named_port_days: int = Field(
        default=45,
        description="Days a port with a custom name may stay down before it is flagged"
    )

    # Database
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL for audit history (defaults to sqlite:///audit.db)"
    )

    @field_validator("audit_log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    def get_safe_dict(self) -> dict:
        """Settings as a dict with the controller password masked."""
        data = self.model_dump()
        if data.get("unifi_password"):
            data["unifi_password"] = "***MASKED***"
        return data


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Drop the cached settings and read the environment again."""
    global _settings
    _settings = None
    return get_settings()
