"""Typed settings read from the environment.

Precedence, highest first: process environment, ``.env`` in the working
directory, field defaults. Field names are matched case-insensitively.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE_CONFIG = {
    "env_file": ".env",
    "env_file_encoding": "utf-8",
    "case_sensitive": False,
    "extra": "ignore",
}


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Renderer used by setup_logging: one JSON object per line, or console text."""

    JSON = "json"
    TEXT = "text"


class DatabaseSettings(BaseSettings):
    """Relational store connection (``POSTGRES_*``).

    PostgreSQL through asyncpg is the production backend. ``POSTGRES_DSN``
    takes any SQLAlchemy async URL instead; tests point it at aiosqlite.
    """

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    user: str = Field(default="kubefleet", description="Database user")
    password: str = Field(default="", description="Database password")
    database: str = Field(default="kubefleet", description="Database name")
    dsn: str | None = Field(default=None, description="Full async database URL override")

    @property
    def async_url(self) -> str:
        if self.dsn:
            return self.dsn
        credentials = f"{self.user}:{self.password}" if self.password else self.user
        return f"postgresql+asyncpg://{credentials}@{self.host}:{self.port}/{self.database}"


class Settings(BaseSettings):
    """Settings shared by every KubeFleet process."""

    model_config = SettingsConfigDict(**_ENV_FILE_CONFIG)

    app_name: str = Field(default="kubefleet", description="Service name stamped on log events")
    app_version: str = Field(default="0.1.0", description="Reported by the root endpoint")
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        alias="ENV",
        description="Deployment environment",
    )
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Root log level")
    log_format: LogFormat = Field(default=LogFormat.JSON, description="Log renderer")
    debug: bool = Field(default=False, description="Echo SQL statements")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, parsed once."""
    return Settings()


class ClusterManagerSettings(Settings):
    """Settings of the Cluster Manager service."""

    model_config = SettingsConfigDict(**_ENV_FILE_CONFIG, populate_by_name=True)

    # Health probing
    health_checks_enabled: bool = Field(
        default=True,
        description="Run the background health prober for registered clusters",
    )
    health_check_interval_seconds: float = Field(
        default=30,
        gt=0,
        description="Interval between health probes of one cluster",
    )
    health_check_failure_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive failed probes before a cluster is marked unhealthy",
    )
    probe_timeout_seconds: float = Field(
        default=5,
        gt=0,
        description="Timeout of a single background health probe",
    )

    # Remote calls
    connect_timeout_seconds: float = Field(
        default=10,
        gt=0,
        description="Timeout of the connectivity probe run by register and refresh",
    )
    request_timeout_seconds: float = Field(
        default=30,
        gt=0,
        description="Default deadline of resource operations when the caller gives none",
    )

    # Secrets
    credential_encryption_key: str | None = Field(
        default=None,
        alias="CLUSTER_CREDENTIAL_ENCRYPTION_KEY",
        description="Base64 AES-256 key used to encrypt stored cluster credentials",
    )
    password_hash_rounds: int = Field(
        default=12,
        ge=4,
        le=31,
        description="bcrypt cost factor for user passwords",
    )
