"""Queue server configuration using pydantic-settings with env var and YAML file support.

Env vars (FBQ_ prefix) take precedence over YAML config file values.
Every setting has a default so a bare development checkout starts without any
configuration; production deployments set the broker location and mail
credentials.
"""

from __future__ import annotations

import logging
import os
import sys
from functools import lru_cache
from typing import Literal

import pydantic
from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

log = logging.getLogger(__name__)

_YAML_CONFIG_PATH = "/config/queue.yml"


class QueueSettings(BaseSettings):
    """Queue server configuration.

    Precedence (highest to lowest):
    1. FBQ_-prefixed environment variables
    2. YAML config file at /config/queue.yml
    3. Defaults defined below
    """

    model_config = SettingsConfigDict(
        env_prefix="FBQ_",
        yaml_file=_YAML_CONFIG_PATH,
        yaml_file_encoding="utf-8",
    )

    # Broker location: handoff tables and job records live under data_dir
    data_dir: str = "./data"
    users_db_path: str | None = None

    # Retry policy applied when enqueue options don't override it
    job_attempts: int = Field(default=3, ge=1, le=20)
    backoff_type: Literal["fixed", "exponential"] = "exponential"
    backoff_delay_ms: int = Field(default=1000, ge=0)

    # Worker tunables
    poll_interval: float = Field(default=1.0, ge=0.05, le=60.0)
    worker_concurrency: int = Field(default=1, ge=1, le=32)
    active_lease_seconds: float = Field(default=300.0, ge=1.0)
    maintenance_interval: float = Field(default=60.0, ge=1.0)
    fail_fast_permanent: bool = False

    # Terminal jobs stay queryable this long, then get purged
    retention_seconds: int = Field(default=86400, ge=0)

    # Mail transport
    mail_provider: Literal["smtp", "console"] = "console"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_ssl: bool = True
    smtp_timeout: float = Field(default=30.0, ge=1.0)
    mail_from: str = "Feedback App <noreply@example.com>"

    # Status Gateway
    gateway_host: str = "0.0.0.0"
    gateway_port: int = 3001
    log_level: str = "info"
    embedded_workers: bool = False

    @field_validator("log_level", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log_level is a stdlib logging level name."""
        valid = ("trace", "debug", "info", "warning", "error", "critical")
        if v.lower() not in valid:
            raise ValueError(f"log_level must be one of {valid}, got: {v}")
        return v.lower()

    @property
    def jobs_db_path(self) -> str:
        return os.path.join(self.data_dir, "jobs.db")

    @property
    def handoff_path(self) -> str:
        return os.path.join(self.data_dir, "queue")

    @property
    def resolved_users_db_path(self) -> str:
        return self.users_db_path or os.path.join(self.data_dir, "users.db")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Return sources in priority order: init kwargs > env > YAML."""
        return (init_settings, env_settings, YamlConfigSettingsSource(settings_cls))

    def log_config(self) -> None:
        """Log configuration with masked SMTP password."""
        if len(self.smtp_password) > 8:
            masked = self.smtp_password[:2] + '****' + self.smtp_password[-2:]
        else:
            masked = '****' if self.smtp_password else '(unset)'
        log.info(
            f"Queue config: data_dir={self.data_dir}, "
            f"attempts={self.job_attempts}, "
            f"backoff={self.backoff_type}/{self.backoff_delay_ms}ms, "
            f"concurrency={self.worker_concurrency}, "
            f"retention={self.retention_seconds}s, "
            f"mail={self.mail_provider} ({self.smtp_username or '-'} / {masked}), "
            f"fail_fast_permanent={self.fail_fast_permanent}"
        )


@lru_cache(maxsize=1)
def get_settings() -> QueueSettings:
    """Return the cached QueueSettings instance.

    Exits with a helpful error message if the configuration is invalid.
    """
    try:
        return QueueSettings()
    except pydantic.ValidationError as exc:
        problems = []
        for error in exc.errors():
            loc = error.get("loc", ())
            field = str(loc[0]) if loc else "?"
            problems.append(f"FBQ_{field.upper()}: {error.get('msg')}")
        print(
            "\nInvalid queue configuration:\n  "
            + "\n  ".join(problems)
            + f"\nSet these as environment variables or fix them in {_YAML_CONFIG_PATH}\n",
            file=sys.stderr,
        )
        sys.exit(1)
