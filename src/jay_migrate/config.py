"""Configuration management for jay-migrate."""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Literal

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .migrations.executors import EXECUTORS
from .utils import ensure_dir, expand_path

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "JAYCONFIG"
DEFAULT_CONFIG_NAME = "jay.toml"
MEMORY_DATABASE = ":memory:"

# Dialects whose database setting is a file path relative to the config file
FILE_DIALECTS = ("sqlite", "tinydb")


class Config(BaseModel):
    """Configuration for jay-migrate.

    Pydantic model that validates the values the migration engine needs:
    which database to open, where the migration files live and which table
    holds the position.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    dialect: Literal["sqlite", "tinydb", "mysql"] = "sqlite"
    database: str = Field(
        min_length=1, description="Database file path, or the database name for mysql"
    )
    folder: Path
    table: str = Field(
        pattern=r"^[A-Za-z_][A-Za-z0-9_]*$",
        description="Table that stores the migration position",
    )
    extension: str | None = None

    # Server connection, used by the mysql dialect only
    host: str = "127.0.0.1"
    port: int = Field(default=3306, ge=1, le=65535)
    user: str | None = None
    password: str | None = None

    @field_validator("database", mode="before")
    @classmethod
    def strip_database(cls, v: str) -> str:
        """Treat a whitespace-only database as missing."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("folder", mode="before")
    @classmethod
    def expand_folder(cls, v: str | Path) -> Path:
        """Expand path strings with ~ and environment variables."""
        if isinstance(v, str):
            if not v.strip():
                raise ValueError("Migration folder is missing from the config file")
            return expand_path(v)
        return v

    @model_validator(mode="after")
    def default_extension(self) -> "Config":
        """Use the dialect's file extension when none is configured."""
        if not self.extension:
            self.extension = EXECUTORS[self.dialect].extension
        return self

    def resolve(self, base_dir: Path) -> "Config":
        """
        Return a copy with relative paths anchored at ``base_dir``.

        Args:
            base_dir: Directory of the config file
        """
        database = self.database
        if self.dialect in FILE_DIALECTS and database != MEMORY_DATABASE:
            database = str(base_dir / expand_path(database))
        return self.model_copy(update={"database": database, "folder": base_dir / self.folder})

    def connection_options(self) -> dict[str, Any]:
        """Return the extra executor arguments for server dialects."""
        if self.dialect in FILE_DIALECTS:
            return {}
        return {"host": self.host, "port": self.port, "user": self.user, "password": self.password}

    def save(self, path: Path) -> None:
        """
        Save configuration to TOML file.

        Args:
            path: Path to save config file
        """
        ensure_dir(path.parent)

        database: dict[str, Any] = {
            "dialect": self.dialect,
            "path": self.database,
        }
        if self.dialect not in FILE_DIALECTS:
            database["host"] = self.host
            database["port"] = self.port
            # tomli-w has no null; unset credentials are left out
            if self.user is not None:
                database["user"] = self.user
            if self.password is not None:
                database["password"] = self.password

        data = {
            "database": database,
            "migration": {
                "folder": str(self.folder),
                "table": self.table,
                "extension": self.extension,
            },
        }

        with open(path, "wb") as f:
            tomli_w.dump(data, f)


def get_config_path() -> Path:
    """
    Get configuration file path.

    Priority:
    1. JAYCONFIG environment variable
    2. Default: ./jay.toml

    Returns:
        Path to config file
    """
    env_config = os.environ.get(CONFIG_ENV_VAR)
    if env_config:
        return expand_path(env_config)

    return Path(DEFAULT_CONFIG_NAME)


def create_default_config(dialect: str = "sqlite") -> Config:
    """
    Create a starter configuration.

    Args:
        dialect: Database dialect to configure

    Returns:
        Config instance with paths relative to the config file
    """
    if dialect == "mysql":
        return Config(
            dialect=dialect, database="app", folder=Path("migrations"), table="migration", user="root"
        )
    database = "database.db" if dialect == "sqlite" else "database.json"
    return Config(
        dialect=dialect, database=database, folder=Path("migrations"), table="migration"
    )


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from a TOML file.

    Relative database and folder paths are resolved against the directory
    holding the config file.

    Args:
        config_path: Optional custom config path

    Returns:
        Config instance with absolute paths

    Raises:
        FileNotFoundError: If the config file or the migration folder is missing
        ValueError: If config validation fails
    """
    if config_path is None:
        config_path = get_config_path()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path} (create one with 'jay init' "
            f"or point {CONFIG_ENV_VAR} at it)"
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    # Flatten TOML structure to match Config model fields
    flat_data = {
        "dialect": data.get("database", {}).get("dialect", "sqlite"),
        "database": data.get("database", {}).get("path", ""),
        "folder": data.get("migration", {}).get("folder", ""),
        "table": data.get("migration", {}).get("table", ""),
        "extension": data.get("migration", {}).get("extension"),
        "host": data.get("database", {}).get("host", "127.0.0.1"),
        "port": data.get("database", {}).get("port", 3306),
        "user": data.get("database", {}).get("user"),
        "password": data.get("database", {}).get("password"),
    }

    config = Config.model_validate(flat_data).resolve(config_path.resolve().parent)
    logger.debug(f"Loaded config from {config_path}")

    if not config.folder.is_dir():
        raise FileNotFoundError(f"Migration folder is not found on disk: {config.folder}")

    return config
