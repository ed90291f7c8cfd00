"""Configuration management for cartridge-stream."""

from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from ..schema_evolution.config import SchemaEvolutionConfig
from ..schema_evolution.exceptions import UnsupportedValueKind
from ..schema_evolution.type_converter import TypeConverter


class ConnectorConfig(BaseModel):
    """DDL connector configuration."""

    type: str = Field("memory", description="Type of DDL connector")
    name: Optional[str] = Field(None, description="Connector name, used for client naming")
    connection_string: str = Field("", description="Store connection string")
    properties: dict[str, Any] = Field(
        default_factory=dict, description="Connector specific properties"
    )

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        """Validate connector type."""
        # Imported here so registration runs before the check
        from ..connectors.factory import get_connector_factory

        allowed_types = get_connector_factory().list_available_connectors()
        if v not in allowed_types:
            raise ValueError(f"Connector type must be one of: {', '.join(allowed_types)}")
        return v


class PrometheusConfig(BaseModel):
    """Prometheus monitoring configuration."""

    enabled: bool = False
    port: int = 8080
    path: str = "/metrics"


class MonitoringConfig(BaseModel):
    """Monitoring and observability configuration."""

    prometheus: PrometheusConfig = PrometheusConfig()
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    structured_logging: bool = True


class ErrorHandlingConfig(BaseModel):
    """Retry configuration for transient DDL failures."""

    max_retries: int = Field(3, ge=0)
    backoff_factor: float = Field(2.0, ge=1.0)
    initial_backoff_seconds: float = Field(0.5, ge=0)
    max_backoff_seconds: float = Field(30.0, ge=0)

    @model_validator(mode="after")
    def validate_backoff_bounds(self):
        """Ensure the initial backoff does not exceed the maximum."""
        if self.initial_backoff_seconds > self.max_backoff_seconds:
            raise ValueError("initial_backoff_seconds must not exceed max_backoff_seconds")
        return self


class StreamConfig(BaseSettings):
    """Main configuration for cartridge-stream."""

    connector: ConnectorConfig = ConnectorConfig()
    schema_evolution: SchemaEvolutionConfig = SchemaEvolutionConfig()
    error_handling: ErrorHandlingConfig = ErrorHandlingConfig()
    monitoring: MonitoringConfig = MonitoringConfig()

    # Seed tables for the in-memory connector: table -> column -> SQL type
    tables: dict[str, dict[str, str]] = Field(default_factory=dict)

    model_config = {
        "env_prefix": "CARTRIDGE_STREAM_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @field_validator("tables")
    @classmethod
    def validate_table_types(cls, v):
        """Ensure every seed column type is a supported SQL type."""
        converter = TypeConverter()
        for table, columns in v.items():
            for column, sql_type in columns.items():
                try:
                    converter.parse(sql_type, column)
                except UnsupportedValueKind as e:
                    raise ValueError(f"Table '{table}': {e}") from e
        return v

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "StreamConfig":
        """Load configuration from YAML file."""
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def connector_settings(self) -> dict[str, Any]:
        """Connector section as a plain dict, as consumed by the client handler."""
        return self.connector.model_dump()
