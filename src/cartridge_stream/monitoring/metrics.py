"""Prometheus metrics collection for cartridge-stream."""

from typing import Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for schema evolution."""

    def __init__(self, prometheus_config=None):
        """Initialize metrics collector."""
        self.config = prometheus_config
        self.registry = CollectorRegistry()
        self._server_started = False

        # Initialize metrics
        self._init_metrics()

    def _init_metrics(self):
        """Initialize Prometheus metrics."""
        self.schema_changes_total = Counter(
            'cartridge_stream_schema_changes_total',
            'Total number of applied column changes',
            ['table', 'change_type'],
            registry=self.registry
        )

        self.type_conflicts_total = Counter(
            'cartridge_stream_type_conflicts_total',
            'Total number of records diverted because of a type conflict',
            ['table'],
            registry=self.registry
        )

        self.rejected_records_total = Counter(
            'cartridge_stream_rejected_records_total',
            'Total number of records rejected before evolution',
            ['table', 'reason'],
            registry=self.registry
        )

        self.ddl_attempts_total = Counter(
            'cartridge_stream_ddl_attempts_total',
            'Total number of DDL requests by outcome',
            ['table', 'outcome'],
            registry=self.registry
        )

        self.batch_duration = Histogram(
            'cartridge_stream_batch_duration_seconds',
            'Time spent evolving and classifying a batch',
            ['table', 'state'],
            registry=self.registry
        )

        self.cached_tables = Gauge(
            'cartridge_stream_cached_tables',
            'Number of tables with a cached schema snapshot',
            registry=self.registry
        )

    async def start_server(self):
        """Start the Prometheus metrics server."""
        if self.config is None or not self.config.enabled or self._server_started:
            return

        logger.info("Starting Prometheus metrics server", port=self.config.port)
        start_http_server(self.config.port, registry=self.registry)
        self._server_started = True

    def record_schema_change(self, table: str, change_type: str, count: int = 1):
        """Record applied column additions or widenings."""
        self.schema_changes_total.labels(table=table, change_type=change_type).inc(count)

    def record_type_conflicts(self, table: str, count: int):
        if count:
            self.type_conflicts_total.labels(table=table).inc(count)

    def record_rejected(self, table: str, reason: str, count: int = 1):
        if count:
            self.rejected_records_total.labels(table=table, reason=reason).inc(count)

    def record_ddl_attempt(self, table: str, outcome: str):
        """Record one DDL request (applied, throttled, already_exists, fatal)."""
        self.ddl_attempts_total.labels(table=table, outcome=outcome).inc()

    def record_batch_duration(self, table: str, state: str, seconds: float):
        self.batch_duration.labels(table=table, state=state).observe(seconds)

    def set_cached_tables(self, count: int):
        self.cached_tables.set(count)

    def get_sample_value(self, name: str, labels: Optional[dict[str, str]] = None) -> Optional[float]:
        """Read a single sample from the private registry."""
        return self.registry.get_sample_value(name, labels or {})
