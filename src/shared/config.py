# Configuration loader with environment variable support
# YAML file carries pipeline tuning, environment carries endpoints and secrets

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import GraphIngestBaseModel

logger = logging.getLogger(__name__)

DEFAULT_NEO4J_URI = "bolt://localhost:7687"
DEFAULT_NEO4J_USER = "neo4j"
DEFAULT_NEO4J_PASSWORD = "neo4j"
DEFAULT_CREDENTIALS_FILENAME = "credentials.yaml"

# Upper bound on simultaneous write transactions offered to a single store
MAX_CONCURRENT_BATCHES_LIMIT = 64


class ConfigurationError(Exception):
    """Raised when a configuration or credentials file cannot be used."""


class IngestionConfig(BaseModel):
    input_glob: str = "/data/*.json"
    batch_size: int = Field(default=500, ge=1)
    max_concurrent_batches: int = Field(default=8, ge=1)
    decode_workers: Optional[int] = Field(default=None, ge=1)
    decode_executor: str = "process"
    fail_fast_on_file_error: bool = False
    link_relationships: bool = True
    constraint_settle_seconds: float = Field(default=0.5, ge=0)

    @field_validator("max_concurrent_batches")
    @classmethod
    def validate_concurrency(cls, v):
        if v > MAX_CONCURRENT_BATCHES_LIMIT:
            raise ValueError(
                f"max_concurrent_batches must be <= {MAX_CONCURRENT_BATCHES_LIMIT}, got {v}"
            )
        return v

    @field_validator("decode_executor")
    @classmethod
    def validate_executor(cls, v):
        valid = {"process", "thread"}
        if v not in valid:
            raise ValueError(f"decode_executor must be one of {sorted(valid)}, got {v}")
        return v

    @property
    def resolved_decode_workers(self) -> int:
        return self.decode_workers or os.cpu_count() or 1


class RetryConfig(BaseModel):
    initial_interval_seconds: float = Field(default=0.1, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_interval_seconds: float = Field(default=10.0, gt=0)
    max_elapsed_seconds: float = Field(default=60.0, gt=0)


class Neo4jConfig(BaseModel):
    database: Optional[str] = None
    max_connection_pool_size: int = Field(default=50, ge=1)
    connection_timeout_seconds: float = Field(default=15.0, gt=0)
    relationship_batch_size: int = Field(default=10000, ge=1)


class Config(GraphIngestBaseModel):
    """Main configuration model"""

    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    neo4j: Neo4jConfig = Field(default_factory=Neo4jConfig)


class Settings(BaseSettings):
    """Environment-based settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="development", alias="ENV")
    config_path: Optional[str] = Field(default=None, alias="CONFIG_PATH")
    credentials_path: str = Field(
        default=DEFAULT_CREDENTIALS_FILENAME, alias="CREDENTIALS_PATH"
    )

    # Neo4j overrides (take precedence over the credentials file)
    neo4j_uri: Optional[str] = Field(default=None, alias="NEO4J_URI")
    neo4j_user: Optional[str] = Field(default=None, alias="NEO4J_USER")
    neo4j_password: Optional[str] = Field(default=None, alias="NEO4J_PASSWORD")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")


class Credentials(BaseModel):
    uri: str = DEFAULT_NEO4J_URI
    user: str = DEFAULT_NEO4J_USER
    password: str = DEFAULT_NEO4J_PASSWORD

    def __repr__(self) -> str:
        return f"Credentials(uri={self.uri!r}, user={self.user!r}, password='***')"

    __str__ = __repr__


def _read_yaml(path: Path) -> dict:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not read {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return data


def load_credentials(
    path: Optional[str | Path] = None, settings: Optional[Settings] = None
) -> Credentials:
    """
    Load store credentials.

    Values come from the credentials YAML file when it exists, then from
    NEO4J_* environment variables, then from local defaults.

    Raises:
        ConfigurationError: If the file exists but is unreadable or invalid
    """
    settings = settings or Settings()
    cred_path = Path(path or settings.credentials_path)

    values: dict = {}
    if cred_path.exists():
        logger.info(f"Loading credentials from: {cred_path}")
        values = _read_yaml(cred_path)
    else:
        logger.info(f"No credentials file at {cred_path}, using defaults")

    overrides = {
        "uri": settings.neo4j_uri,
        "user": settings.neo4j_user,
        "password": settings.neo4j_password,
    }
    values.update({k: v for k, v in overrides.items() if v})

    try:
        return Credentials(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid credentials in {cred_path}: {e}") from e


def _resolve_config_path(settings: Settings) -> Path:
    if settings.config_path:
        return Path(settings.config_path)
    return Path(__file__).parent.parent.parent / "config" / f"{settings.env}.yaml"


def load_config(path: Optional[str | Path] = None) -> tuple[Config, Settings]:
    """
    Load configuration from YAML file and environment variables.

    A missing file yields the defaults; an unreadable or invalid one is fatal.

    Returns:
        tuple: (Config, Settings) - YAML config and environment settings

    Raises:
        ConfigurationError: If the config file cannot be parsed or validated
    """
    settings = Settings()
    config_path = Path(path) if path else _resolve_config_path(settings)

    if not config_path.exists():
        logger.warning(f"Configuration file not found: {config_path}, using defaults")
        return Config(), settings

    logger.info(f"Loading configuration from: {config_path}")
    config_dict = _read_yaml(config_path)

    try:
        config = Config(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    return config, settings

