"""Configuration schema: Pydantic models for crosspls config files."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: Optional[str] = None
    format: Optional[Literal["kv", "json", "pretty"]] = None
    console: Optional[bool] = None
    file: Optional[bool] = None
    dev_file: Optional[bool] = Field(None, alias="devFile")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ServerConfig(BaseModel):
    """Language server process settings.

    ``path`` replaces the executable resolved under the install root.
    Timeouts are in seconds and bound the start handshake and the stop
    sequence respectively.
    """
    path: Optional[str] = None
    start_timeout: Optional[float] = Field(None, alias="startTimeout", gt=0)
    stop_timeout: Optional[float] = Field(None, alias="stopTimeout", gt=0)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class Config(BaseModel):
    """Main configuration schema."""
    schema_: Optional[str] = Field(None, alias="$schema")
    log_level: Optional[str] = Field(None, alias="logLevel")
    logging: Optional[LoggingConfig] = None
    server: ServerConfig = Field(default_factory=ServerConfig)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)
