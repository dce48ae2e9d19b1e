"""Configuration module for the note store.

Two layers of configuration live here:

* ``DatabaseConfig``: the connection settings handed to the
  ConnectionProvider. Resolved once from a properties file (an explicit
  path, else the bundled ``config.properties`` resource), falling back to a
  fixed development default.
* ``NoteStoreConfig``: ambient settings (logging, metrics, CLI defaults)
  read from the environment after loading ``.env`` files.
"""

import logging
import os
from importlib import resources
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from dotenv import dotenv_values, load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from note_store.exceptions import ConfigurationError

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

logger = logging.getLogger(__name__)

# Name of the properties resource bundled inside the note_store package
PROPERTIES_RESOURCE = "config.properties"

# Fixed development default, matching the bundled docker-compose MySQL service
DEFAULT_DATABASE_PROPERTIES: Dict[str, str] = {
    "db.url": "mysql://localhost:3307/notedb",
    "db.username": "noteuser",
    "db.password": "notepassword",
    "db.driver": "pymysql",
}

# Properties keys mapped onto DatabaseConfig fields
_PROPERTY_FIELDS = {
    "db.url": "url",
    "db.username": "username",
    "db.password": "password",
    "db.driver": "driver",
    "db.pool.max_size": "max_pool_size",
    "db.pool.min_idle": "min_idle",
    "db.pool.idle_timeout": "idle_timeout",
    "db.pool.acquire_timeout": "acquire_timeout",
    "db.pool.liveness_query": "liveness_query",
}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class DatabaseConfig(BaseModel):
    """Connection and pool settings for the relational store."""

    url: str = Field(..., description="SQLAlchemy database URL")
    username: Optional[str] = Field(default=None, description="Database user")
    password: Optional[str] = Field(default=None, description="Database password")
    driver: Optional[str] = Field(
        default=None, description="DBAPI driver appended as backend+driver"
    )
    max_pool_size: int = Field(default=10, description="Maximum pooled connections")
    min_idle: int = Field(
        default=2,
        description=(
            "Connections opened at start. Not a floor afterwards: connections"
            " discarded for idling or a failed probe are reopened on demand"
        ),
    )
    idle_timeout: float = Field(
        default=30.0, description="Seconds a connection may sit idle in the pool"
    )
    acquire_timeout: float = Field(
        default=20.0, description="Seconds to wait for a free connection"
    )
    liveness_query: str = Field(
        default="SELECT 1", description="Probe run on every checkout"
    )
    echo: bool = Field(default=False, description="Log every SQL statement")

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that the URL parses as a SQLAlchemy URL."""
        if not v or not v.strip():
            raise ValueError("Database URL cannot be empty")
        try:
            make_url(v)
        except ArgumentError as e:
            raise ValueError(f"Invalid database URL: {e}") from e
        return v

    @field_validator("username", "password", "driver")
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _validate_pool_bounds(self) -> "DatabaseConfig":
        """Validate pool sizing and timeouts."""
        if self.max_pool_size < 1:
            raise ValueError("max_pool_size must be >= 1")
        if self.min_idle < 0:
            raise ValueError("min_idle must be >= 0")
        if self.min_idle > self.max_pool_size:
            raise ValueError("min_idle cannot exceed max_pool_size")
        if self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")
        if self.acquire_timeout <= 0:
            raise ValueError("acquire_timeout must be > 0")
        return self

    @classmethod
    def from_properties(cls, properties: Mapping[str, Optional[str]]) -> "DatabaseConfig":
        """Build a config from ``db.*`` properties.

        Unknown keys are ignored; values are validated by the model.

        Raises:
            ConfigurationError: If a value is missing or invalid.
        """
        values = {
            field: properties[key]
            for key, field in _PROPERTY_FIELDS.items()
            if properties.get(key) is not None
        }
        try:
            return cls(**values)
        except ValidationError as e:
            first = e.errors()[0]
            field = str(first["loc"][0]) if first.get("loc") else None
            key = next(
                (k for k, f in _PROPERTY_FIELDS.items() if f == field), field
            )
            raise ConfigurationError(
                f"Invalid database configuration: {first['msg']}",
                config_key=key,
            ) from e

    def get_db_url(self) -> URL:
        """Get the SQLAlchemy URL with driver and credentials applied.

        SQLite URLs are returned as given: the file has no credentials and
        the server driver from the defaults does not apply to it.
        """
        url = make_url(self.url)
        if self.is_sqlite:
            return url
        if self.driver and "+" not in url.drivername:
            url = url.set(drivername=f"{url.drivername}+{self.driver}")
        if self.username:
            url = url.set(username=self.username)
        if self.password:
            url = url.set(password=self.password)
        return url

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.url).get_backend_name() == "sqlite"

    @property
    def is_memory(self) -> bool:
        """Whether the URL points at an in-memory SQLite database."""
        database = make_url(self.url).database
        return self.is_sqlite and (not database or database == ":memory:")


def _bundled_properties_path() -> Optional[Path]:
    resource = resources.files("note_store") / PROPERTIES_RESOURCE
    if resource.is_file():
        return Path(str(resource))
    return None


def load_database_properties(
    path: Optional[Union[str, Path]] = None,
) -> Dict[str, str]:
    """Load database properties.

    Precedence: the explicit ``path``, then the bundled resource, then the
    fixed development default. A file found on disk overlays the defaults
    key by key, so it only has to name what differs.

    Args:
        path: Optional properties file to read instead of the bundled one.

    Returns:
        Dictionary of ``db.*`` properties.

    Raises:
        ConfigurationError: If an explicit path does not exist.
    """
    properties = dict(DEFAULT_DATABASE_PROPERTIES)

    if path is not None:
        source = Path(path)
        if not source.is_file():
            raise ConfigurationError(
                f"Properties file not found: {source}", config_key="properties"
            )
    else:
        source = _bundled_properties_path()

    if source is None:
        logger.info("Using default database configuration")
        return properties

    loaded = {k: v for k, v in dotenv_values(source).items() if v is not None}
    properties.update(loaded)
    logger.info(f"Loaded database properties from {source.name}")
    return properties


def resolve_database_config(
    path: Optional[Union[str, Path]] = None,
) -> DatabaseConfig:
    """Resolve the database configuration once, following the precedence
    described in ``load_database_properties``."""
    return DatabaseConfig.from_properties(load_database_properties(path))


class NoteStoreConfig(BaseModel):
    """Ambient settings for logging, metrics and the command line."""

    properties_path: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTE_STORE_PROPERTIES"))
            if os.getenv("NOTE_STORE_PROPERTIES")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTE_STORE_LOG_LEVEL", "INFO").upper()
    )
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTE_STORE_LOG_DIR"))
            if os.getenv("NOTE_STORE_LOG_DIR")
            else None
        )
    )
    metrics_file: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTE_STORE_METRICS_FILE"))
            if os.getenv("NOTE_STORE_METRICS_FILE")
            else None
        )
    )
    # Insert the development user (id 1) when the schema is initialized
    seed_default_user: bool = Field(
        default_factory=lambda: _env_flag("NOTE_STORE_SEED_DEFAULT_USER", "true")
    )

    model_config = {"validate_assignment": True}

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


# Create a global config instance
config = NoteStoreConfig()
