"""Runtime settings loaded from IPCERT_* environment variables."""

import os
from collections.abc import Mapping
from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from ipcert.client import DEFAULT_CSR_COMMON_NAME, DEFAULT_PROFILE
from ipcert.directory import LETSENCRYPT_DIRECTORY_URL

ENV_PREFIX = "IPCERT_"


class ConfigError(Exception):
    """Raised when the environment holds an invalid setting."""


class Settings(BaseModel):
    """Resolved runtime configuration."""

    directory_url: str = LETSENCRYPT_DIRECTORY_URL
    data_dir: Path = Path("data")
    profile: str | None = DEFAULT_PROFILE
    csr_common_name: str = DEFAULT_CSR_COMMON_NAME
    contact_email: str | None = None
    ca_cert: str | None = None
    http_host: str = "0.0.0.0"
    http_port: int = Field(default=80, ge=0, le=65535)
    https_port: int = Field(default=443, ge=0, le=65535)
    renew_interval_hours: float = Field(default=24, gt=0)
    retry_interval_hours: float | None = Field(default=None, gt=0)
    public_ip: str | None = None
    log_level: str = "INFO"

    @field_validator("profile", "contact_email", "ca_cert", "public_ip", "retry_interval_hours", mode="before")
    @classmethod
    def _empty_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def account_dir(self) -> Path:
        return self.data_dir / "acme"

    @property
    def certificate_dir(self) -> Path:
        return self.data_dir / "acme" / "certs"

    @property
    def renew_interval(self) -> timedelta:
        return timedelta(hours=self.renew_interval_hours)

    @property
    def retry_interval(self) -> timedelta | None:
        if self.retry_interval_hours is None:
            return None
        return timedelta(hours=self.retry_interval_hours)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from IPCERT_* variables; unset ones keep defaults.

        Args:
            environ: Environment mapping (defaults to os.environ).

        Returns:
            The validated settings.

        Raises:
            ConfigError: If a variable has an invalid value.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            key = ENV_PREFIX + name.upper()
            if key in environ:
                values[name] = environ[key]

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
