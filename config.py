import logging
import os
from typing import Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from record_schema import UntaggedFieldPolicy
from utils.errors import ConfigError

logger = logging.getLogger(__name__)

# Environment variable -> Settings field
ENV_VARS = {
    "RECORD_SOURCE": "record_source",
    "DATABASE_URL": "database_url",
    "DB_MAX_OPEN_CONNS": "db_max_open_conns",
    "DB_MAX_IDLE_CONNS": "db_max_idle_conns",
    "DB_CONN_MAX_LIFETIME": "db_conn_max_lifetime",
    "UPSTREAM_API_URL": "upstream_api_url",
    "UPSTREAM_API_TOKEN": "upstream_api_token",
    "EXPORT_TIMEOUT": "export_timeout",
    "EXPORT_WORKERS": "export_workers",
    "BUFFER_POOL_SIZE": "buffer_pool_size",
    "UNTAGGED_FIELDS": "untagged_fields",
}


class Settings(BaseModel):
    """
    Service configuration.

    Attributes:
        record_source: Fetch records from the database or the upstream API
        database_url: SQLAlchemy URL, required for the database source
        db_max_open_conns: Upper bound on open connections
        db_max_idle_conns: Connections kept in the pool between requests
        db_conn_max_lifetime: Seconds before a pooled connection is recycled
        upstream_api_url: Base URL, required for the API source
        upstream_api_token: Optional bearer token for the upstream API
        export_timeout: Seconds a single export may take, fetch and write included
        export_workers: Threads used to project rows
        buffer_pool_size: Output buffers kept for reuse across requests
        untagged_fields: Naming policy for fields without a display name
    """
    model_config = ConfigDict(frozen=True)

    record_source: Literal["database", "api"] = "database"
    database_url: Optional[str] = None
    db_max_open_conns: int = Field(default=25, ge=1)
    db_max_idle_conns: int = Field(default=5, ge=0)
    db_conn_max_lifetime: float = Field(default=300.0, gt=0)
    upstream_api_url: Optional[str] = None
    upstream_api_token: Optional[str] = None
    export_timeout: float = Field(default=300.0, gt=0)
    export_workers: int = Field(default=4, ge=1)
    buffer_pool_size: int = Field(default=4, ge=0)
    untagged_fields: UntaggedFieldPolicy = UntaggedFieldPolicy.FIELD_NAME

    @model_validator(mode="after")
    def check_source(self) -> "Settings":
        if self.record_source == "database" and not self.database_url:
            raise ValueError("DATABASE_URL environment variable is required")
        if self.record_source == "api" and not self.upstream_api_url:
            raise ValueError("UPSTREAM_API_URL environment variable is required when RECORD_SOURCE=api")
        if self.db_max_idle_conns > self.db_max_open_conns:
            raise ValueError("DB_MAX_IDLE_CONNS cannot exceed DB_MAX_OPEN_CONNS")
        return self


def load_settings(environ: Optional[Mapping[str, str]] = None, env_file: str = ".env") -> Settings:
    """
    Load settings from environment variables.

    When no mapping is given, ``env_file`` is loaded into the process
    environment first (existing variables win) and ``os.environ`` is read.

    Raises:
        ConfigError: If a required value is missing or a value is invalid
    """
    if environ is None:
        if not load_dotenv(env_file):
            logger.warning(f"{env_file} file not found, using environment variables")
        environ = os.environ

    values = {
        field: environ[var]
        for var, field in ENV_VARS.items()
        if environ.get(var, "") != ""
    }
    try:
        return Settings.model_validate(values)
    except PydanticValidationError as e:
        messages = "; ".join(error["msg"] for error in e.errors())
        raise ConfigError(f"Invalid configuration: {messages}") from e
