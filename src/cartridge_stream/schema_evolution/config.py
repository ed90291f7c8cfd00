"""Configuration for schema evolution engine."""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class SchemaEvolutionConfig(BaseModel):
    """Configuration for schema evolution behavior."""

    enabled: bool = Field(default=True, description="Enable schema evolution")
    max_concurrent_workers: int = Field(
        default=4, ge=1, description="Maximum batches processed concurrently"
    )
    batch_timeout_seconds: float = Field(
        default=300.0, gt=0, description="Overall timeout for evolving one batch"
    )
    excluded_tables: list[str] = Field(
        default_factory=list, description="Tables whose schema is never evolved"
    )

    @field_validator("excluded_tables", mode="before")
    @classmethod
    def parse_excluded_tables(cls, v: Any):
        """Parse comma-separated string for excluded tables."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    def is_evolution_allowed(self, table: str) -> bool:
        """Check whether DDL may be issued for a table."""
        return self.enabled and table not in self.excluded_tables
