"""Lifecycle management for streaming ingestion clients."""

import itertools
from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

import structlog

from ..schema_evolution.exceptions import ClientCreationError

logger = structlog.get_logger(__name__)

STREAMING_CLIENT_PREFIX = "KC_CLIENT_"
TEST_CLIENT_NAME = "TEST_CLIENT"

# Property keys safe to log, compared case-insensitively
LOGGABLE_CLIENT_PROPERTIES = ("ACCOUNT_URL", "ROLE", "USER", "AUTHORIZATION_TYPE")


@runtime_checkable
class IngestClient(Protocol):
    """Streaming ingestion client as seen by the handler."""

    name: Optional[str]

    def is_closed(self) -> bool:
        ...

    async def close(self) -> None:
        ...


ClientFactory = Callable[[str, dict[str, str]], Awaitable[IngestClient]]


class InMemoryIngestClient:
    """Ingest client that only tracks its own lifecycle."""

    def __init__(self, name: Optional[str], properties: Optional[dict[str, str]] = None):
        self.name = name
        self.properties = dict(properties or {})
        self._closed = False

    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self._closed = True


async def create_in_memory_client(name: str, properties: dict[str, str]) -> InMemoryIngestClient:
    return InMemoryIngestClient(name, properties)


class StreamingClientHandler:
    """Creates, validates and closes streaming ingestion clients."""

    def __init__(self, client_factory: ClientFactory = create_in_memory_client):
        self.client_factory = client_factory
        self._client_ids = itertools.count()

    @staticmethod
    def is_client_valid(client: Optional[IngestClient]) -> bool:
        """Check that a client exists, is open and has a name."""
        return client is not None and not client.is_closed() and client.name is not None

    @staticmethod
    def get_client_properties(connector_config: Optional[dict[str, Any]]) -> dict[str, str]:
        """Extract the client properties from a connector configuration."""
        if not connector_config:
            return {}
        properties = connector_config.get("properties") or {}
        return {str(key): str(value) for key, value in properties.items()}

    @staticmethod
    def get_loggable_client_properties(properties: dict[str, Any]) -> dict[str, Any]:
        """Keep only the properties that carry no secrets."""
        return {
            key: value
            for key, value in properties.items()
            if str(key).upper() in LOGGABLE_CLIENT_PROPERTIES
        }

    async def create_client(
        self, connector_config: dict[str, Any]
    ) -> tuple[dict[str, str], IngestClient]:
        """Create a new client from the connector configuration.

        Args:
            connector_config: Connector section of the configuration, with an
                optional ``name`` and ``properties``

        Returns:
            The client properties and the created client

        Raises:
            ClientCreationError: The client factory failed
        """
        properties = self.get_client_properties(connector_config)
        name = self._new_client_name(connector_config)
        logger.info(
            "Initializing streaming client",
            client=name,
            properties=self.get_loggable_client_properties(properties),
        )

        try:
            client = await self.client_factory(name, properties)
        except Exception as e:
            logger.error("Failed to create streaming client", client=name, error=str(e))
            raise ClientCreationError(f"Failed to create streaming client '{name}': {e}") from e

        logger.info("Initialized streaming client", client=name)
        return properties, client

    async def close_client(self, client: Optional[IngestClient]) -> None:
        """Close a client; failures are logged and never raised."""
        if not self.is_client_valid(client):
            logger.info("Streaming client is already closed")
            return

        name = client.name
        try:
            await client.close()
        except Exception as e:
            logger.error("Failed to close streaming client", client=name, error=str(e))
            return
        logger.info("Closed streaming client", client=name)

    def _new_client_name(self, connector_config: dict[str, Any]) -> str:
        connector_name = connector_config.get("name") or TEST_CLIENT_NAME
        return f"{STREAMING_CLIENT_PREFIX}{connector_name}_{next(self._client_ids)}"


__all__ = [
    "IngestClient",
    "InMemoryIngestClient",
    "StreamingClientHandler",
    "create_in_memory_client",
]
