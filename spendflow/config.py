"""Configuration loading from TOML files with environment variable fallbacks."""

import os
from dataclasses import dataclass
from pathlib import Path

import tomli

from spendflow.errors import ConfigError

DEFAULT_CONFIG_PATHS = [
    Path("config.toml"),
    Path.home() / ".config" / "spendflow" / "config.toml",
]

PLAID_ENVIRONMENTS = ("sandbox", "development", "production")
DEFAULT_DB_PATH = "spendflow.db"
DEFAULT_CLIENT_NAME = "Spendflow"
DEFAULT_DAYS_REQUESTED = 180
DEFAULT_PAGE_SIZE = 500
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_MAX_RESTARTS = 3


@dataclass(frozen=True)
class PlaidConfig:
    """Plaid API configuration."""

    client_id: str
    secret: str
    environment: str
    client_name: str = DEFAULT_CLIENT_NAME
    days_requested: int = DEFAULT_DAYS_REQUESTED
    country_codes: tuple[str, ...] = ("US",)

    @property
    def is_sandbox(self) -> bool:
        """Check if using sandbox environment."""
        return self.environment == "sandbox"

    @property
    def is_configured(self) -> bool:
        """Check if client credentials are present."""
        return bool(self.client_id and self.secret)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database configuration."""

    path: Path


@dataclass(frozen=True)
class SecurityConfig:
    """Security configuration."""

    encryption_key: str | None


@dataclass(frozen=True)
class SyncConfig:
    """Sync pass tuning."""

    page_size: int = DEFAULT_PAGE_SIZE
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_restarts: int = DEFAULT_MAX_RESTARTS


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    file: Path | None = None


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    plaid: PlaidConfig
    database: DatabaseConfig
    security: SecurityConfig
    sync: SyncConfig = SyncConfig()
    logging: LoggingConfig = LoggingConfig()


def find_config_file() -> Path | None:
    """Find the first existing config file from default paths."""
    for path in DEFAULT_CONFIG_PATHS:
        if path.exists():
            return path
    return None


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from TOML file with environment variable fallbacks."""
    path = config_path or find_config_file()
    toml_data = _load_toml_data(path)
    return _build_config(toml_data, path)


def _load_toml_data(config_path: Path | None) -> dict:
    """Load TOML data from file if it exists."""
    if config_path and config_path.exists():
        with open(config_path, "rb") as f:
            try:
                return tomli.load(f)
            except tomli.TOMLDecodeError as e:
                raise ConfigError(f"Invalid config file {config_path}: {e}") from e
    return {}


def _build_config(toml_data: dict, config_path: Path | None) -> Config:
    """Build Config object from TOML data and environment variables."""
    return Config(
        plaid=_build_plaid_config(toml_data.get("plaid", {})),
        database=_build_database_config(toml_data.get("database", {}), config_path),
        security=_build_security_config(toml_data.get("security", {})),
        sync=_build_sync_config(toml_data.get("sync", {})),
        logging=_build_logging_config(toml_data.get("logging", {}), config_path),
    )


def _build_plaid_config(plaid_data: dict) -> PlaidConfig:
    """Build Plaid config from TOML data and env vars."""
    client_id = os.environ.get("SPENDFLOW_PLAID_CLIENT_ID", plaid_data.get("client_id", ""))
    secret = os.environ.get("SPENDFLOW_PLAID_SECRET", plaid_data.get("secret", ""))
    environment = os.environ.get("SPENDFLOW_PLAID_ENV", plaid_data.get("environment", "sandbox"))
    if environment not in PLAID_ENVIRONMENTS:
        raise ConfigError(
            f"Invalid Plaid environment {environment!r}; "
            f"expected one of {', '.join(PLAID_ENVIRONMENTS)}"
        )
    country_codes = plaid_data.get("country_codes", ["US"])
    return PlaidConfig(
        client_id=client_id,
        secret=secret,
        environment=environment,
        client_name=plaid_data.get("client_name", DEFAULT_CLIENT_NAME),
        days_requested=int(plaid_data.get("days_requested", DEFAULT_DAYS_REQUESTED)),
        country_codes=tuple(country_codes),
    )


def _build_database_config(db_data: dict, config_path: Path | None) -> DatabaseConfig:
    """Build database config, resolving relative paths against config file location."""
    db_path = _resolve_path(
        os.environ.get("SPENDFLOW_DB_PATH", db_data.get("path", DEFAULT_DB_PATH)), config_path
    )
    return DatabaseConfig(path=db_path)


def _build_security_config(security_data: dict) -> SecurityConfig:
    """Build security config from TOML data and env vars."""
    encryption_key = os.environ.get(
        "SPENDFLOW_ENCRYPTION_KEY", security_data.get("encryption_key") or None
    )
    return SecurityConfig(encryption_key=encryption_key)


def _build_sync_config(sync_data: dict) -> SyncConfig:
    """Build sync config from TOML data and env vars."""
    try:
        page_size = int(
            os.environ.get(
                "SPENDFLOW_SYNC_PAGE_SIZE", sync_data.get("page_size", DEFAULT_PAGE_SIZE)
            )
        )
        max_concurrency = int(
            os.environ.get(
                "SPENDFLOW_SYNC_MAX_CONCURRENCY",
                sync_data.get("max_concurrency", DEFAULT_MAX_CONCURRENCY),
            )
        )
        max_restarts = int(
            os.environ.get(
                "SPENDFLOW_SYNC_MAX_RESTARTS", sync_data.get("max_restarts", DEFAULT_MAX_RESTARTS)
            )
        )
    except ValueError as e:
        raise ConfigError(f"Invalid sync setting: {e}") from e
    if not 1 <= page_size <= 500:
        raise ConfigError("sync.page_size must be between 1 and 500")
    if max_concurrency < 1:
        raise ConfigError("sync.max_concurrency must be at least 1")
    if max_restarts < 0:
        raise ConfigError("sync.max_restarts must not be negative")
    return SyncConfig(
        page_size=page_size, max_concurrency=max_concurrency, max_restarts=max_restarts
    )


def _build_logging_config(logging_data: dict, config_path: Path | None) -> LoggingConfig:
    """Build logging config from TOML data and env vars."""
    level = os.environ.get("SPENDFLOW_LOG_LEVEL", logging_data.get("level", "INFO"))
    file_str = os.environ.get("SPENDFLOW_LOG_FILE", logging_data.get("file") or None)
    log_file = _resolve_path(file_str, config_path) if file_str else None
    return LoggingConfig(level=level.upper(), file=log_file)


def _resolve_path(path_str: str, config_path: Path | None) -> Path:
    """Resolve a relative path against the config file's directory."""
    path = Path(path_str)
    if not path.is_absolute() and config_path:
        path = config_path.parent / path
    return path
