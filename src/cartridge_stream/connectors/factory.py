"""Connector factory for creating DDL connectors."""

from typing import TYPE_CHECKING, Optional

import structlog

from .base import BaseDdlConnector

if TYPE_CHECKING:
    from ..core.config import ConnectorConfig

logger = structlog.get_logger(__name__)


class ConnectorRegistry:
    """Registry for connector implementations."""

    def __init__(self) -> None:
        self._ddl_connectors: dict[str, type[BaseDdlConnector]] = {}

    def register_ddl_connector(
        self, connector_type: str, connector_class: type[BaseDdlConnector]
    ) -> None:
        """Register a DDL connector implementation.

        Args:
            connector_type: Store type (e.g., "memory")
            connector_class: Connector class that implements BaseDdlConnector
        """
        logger.debug(
            "Registering DDL connector",
            type=connector_type,
            class_name=connector_class.__name__,
        )
        self._ddl_connectors[connector_type] = connector_class

    def get_ddl_connector_class(
        self, connector_type: str
    ) -> Optional[type[BaseDdlConnector]]:
        """Get DDL connector class for given type.

        Returns:
            Connector class or None if not found
        """
        return self._ddl_connectors.get(connector_type)

    def list_ddl_connectors(self) -> list[str]:
        """List all registered DDL connector types."""
        return list(self._ddl_connectors.keys())


# Global registry instance
_registry = ConnectorRegistry()


def register_ddl_connector(connector_type: str):
    """Decorator for registering DDL connector implementations.

    Usage:
        @register_ddl_connector("memory")
        class InMemoryDdlConnector(BaseDdlConnector):
            ...
    """

    def decorator(connector_class: type[BaseDdlConnector]):
        _registry.register_ddl_connector(connector_type, connector_class)
        return connector_class

    return decorator


class ConnectorFactory:
    """Factory for creating DDL connectors."""

    def __init__(self, registry: Optional[ConnectorRegistry] = None):
        """Initialize the factory with a connector registry.

        Args:
            registry: Connector registry to use. If None, uses global registry.
        """
        self.registry = registry or _registry

    async def create_ddl_connector(
        self,
        config: "ConnectorConfig",
        tables: Optional[dict[str, dict[str, str]]] = None,
    ) -> BaseDdlConnector:
        """Create a DDL connector based on configuration.

        Args:
            config: Connector configuration
            tables: Seed table definitions (column name to SQL type)

        Returns:
            Configured DDL connector instance

        Raises:
            ValueError: If connector type is not supported
        """
        connector_class = self.registry.get_ddl_connector_class(config.type)

        if not connector_class:
            available_types = self.registry.list_ddl_connectors()
            raise ValueError(
                f"Unsupported DDL connector type: {config.type}. "
                f"Available types: {available_types}"
            )

        try:
            connector = connector_class(
                connection_string=config.connection_string,
                name=config.name,
                tables=tables or {},
                **config.properties,
            )
        except Exception as e:
            logger.error(
                "Failed to create DDL connector", type=config.type, error=str(e)
            )
            raise

        logger.info("Created DDL connector", type=config.type, name=config.name)
        return connector

    def list_available_connectors(self) -> list[str]:
        """List all available DDL connector types."""
        return self.registry.list_ddl_connectors()


def get_connector_factory() -> ConnectorFactory:
    return ConnectorFactory()


__all__ = [
    "ConnectorFactory",
    "ConnectorRegistry",
    "register_ddl_connector",
    "get_connector_factory",
]
