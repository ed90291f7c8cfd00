"""DDL connectors and ingestion clients for cartridge-stream."""

from .base import (
    BaseDdlConnector,
    ColumnDefinition,
    DdlAlreadyExistsError,
    DdlConnector,
    DdlError,
    DdlFatalError,
    DdlThrottledError,
    Record,
    TypeDescriptor,
)
from .factory import (
    ConnectorFactory,
    ConnectorRegistry,
    get_connector_factory,
    register_ddl_connector,
)

# Import connectors to register them
from . import memory  # noqa: E402,F401
from .client import StreamingClientHandler  # noqa: E402
from .memory import InMemoryDdlConnector  # noqa: E402

__all__ = [
    # Base types and interfaces
    "TypeDescriptor",
    "ColumnDefinition",
    "Record",
    "DdlConnector",
    "BaseDdlConnector",
    "DdlError",
    "DdlAlreadyExistsError",
    "DdlThrottledError",
    "DdlFatalError",
    # Factory and registry
    "ConnectorFactory",
    "ConnectorRegistry",
    "register_ddl_connector",
    "get_connector_factory",
    # Implementations
    "InMemoryDdlConnector",
    "StreamingClientHandler",
]
