"""Main runner wiring configuration, connector and evolution engine."""

import asyncio
from typing import Optional, Sequence, Union

import structlog

from ..connectors.base import DdlConnector, Record
from ..connectors.client import IngestClient, StreamingClientHandler
from ..connectors.factory import ConnectorFactory
from ..monitoring.metrics import MetricsCollector
from ..schema_evolution.cache import TableSchemaCache
from ..schema_evolution.coordinator import EvolutionCoordinator
from ..schema_evolution.types import BatchClassification
from .config import StreamConfig

logger = structlog.get_logger(__name__)

BatchResult = Union[BatchClassification, BaseException]


class StreamRunner:
    """Runs batches of records through schema evolution."""

    def __init__(
        self,
        config: StreamConfig,
        connector: Optional[DdlConnector] = None,
        client_handler: Optional[StreamingClientHandler] = None,
    ):
        """Initialize the runner with configuration.

        Args:
            config: Stream configuration
            connector: DDL connector to use instead of creating one from config
            client_handler: Handler for the streaming ingestion client
        """
        self.config = config
        self.connector_factory = ConnectorFactory()
        self.metrics = MetricsCollector(config.monitoring.prometheus)
        self.client_handler = client_handler or StreamingClientHandler()
        self.connector: Optional[DdlConnector] = connector
        self.cache: Optional[TableSchemaCache] = None
        self.coordinator: Optional[EvolutionCoordinator] = None
        self.client: Optional[IngestClient] = None
        self._semaphore = asyncio.Semaphore(config.schema_evolution.max_concurrent_workers)
        self._running = False

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self):
        """Initialize components and open the ingestion client."""
        logger.info("Starting cartridge-stream", connector=self.config.connector.type)

        try:
            await self._initialize()

            if self.config.monitoring.prometheus.enabled:
                await self.metrics.start_server()

            _, self.client = await self.client_handler.create_client(
                self.config.connector_settings()
            )
        except Exception as e:
            logger.error("Failed to start cartridge-stream", error=str(e))
            raise

        self._running = True

    async def stop(self):
        """Close the ingestion client and the connector."""
        logger.info("Stopping cartridge-stream")
        self._running = False

        await self.client_handler.close_client(self.client)
        self.client = None

        disconnect = getattr(self.connector, "disconnect", None)
        if disconnect is not None:
            await disconnect()

        logger.info("Cartridge-stream stopped successfully")

    async def _initialize(self):
        """Create the connector, schema cache and coordinator."""
        if self.connector is None:
            self.connector = await self.connector_factory.create_ddl_connector(
                self.config.connector, tables=self.config.tables
            )

        connect = getattr(self.connector, "connect", None)
        if connect is not None:
            await connect()

        self.cache = TableSchemaCache(self.connector)
        self.coordinator = EvolutionCoordinator(
            self.cache, self.connector, self.config, self.metrics
        )
        logger.info("Components initialized successfully")

    async def process_batch(self, table: str, batch: Sequence[Record]) -> BatchClassification:
        """Evolve and classify one batch, bounded by the worker pool."""
        if self.coordinator is None:
            raise RuntimeError("Runner not started")

        async with self._semaphore:
            return await self.coordinator.evolve_and_classify(table, batch)

    async def process_batches(
        self, batches: Sequence[tuple[str, Sequence[Record]]]
    ) -> list[BatchResult]:
        """Process many batches concurrently.

        Returns:
            One result per batch, in input order. A failed batch yields its
            exception so the caller can retry it without affecting the others.
        """
        results = await asyncio.gather(
            *(self.process_batch(table, batch) for table, batch in batches),
            return_exceptions=True,
        )

        for (table, batch), result in zip(batches, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Batch failed, must be retried",
                    table=table,
                    batch_size=len(batch),
                    error=str(result),
                )
        return list(results)

    def untrack_table(self, table: str) -> None:
        """Drop a table from tracking and forget its cached schema."""
        if self.cache is None:
            return
        self.cache.evict(table)
        self.metrics.set_cached_tables(len(self.cache.tables()))

    @property
    def running(self) -> bool:
        return self._running
