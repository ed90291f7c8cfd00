"""Test configuration for cartridge-stream."""

import pytest

from cartridge_stream.connectors.memory import InMemoryDdlConnector
from cartridge_stream.core.config import StreamConfig
from cartridge_stream.schema_evolution.cache import TableSchemaCache
from cartridge_stream.schema_evolution.coordinator import EvolutionCoordinator


@pytest.fixture
def sample_config_file(tmp_path):
    """Create a sample configuration file for testing."""
    config_content = """
connector:
  type: memory
  name: "test_connector"
  properties:
    account_url: "https://account.example.com"
    private_key: "secret"

schema_evolution:
  enabled: true
  max_concurrent_workers: 2
  batch_timeout_seconds: 10
  excluded_tables: ["audit_log"]

monitoring:
  prometheus:
    enabled: false
  log_level: "DEBUG"

error_handling:
  max_retries: 1
  initial_backoff_seconds: 0

tables:
  events:
    ID: "NUMBER(19,0)"
    NAME: "VARCHAR(16777216)"
"""

    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content)
    return config_file


@pytest.fixture
def stream_config():
    """Configuration with fast retries for coordinator tests."""
    return StreamConfig(
        error_handling={
            "max_retries": 2,
            "initial_backoff_seconds": 0,
            "max_backoff_seconds": 0,
        },
        schema_evolution={"batch_timeout_seconds": 5},
    )


@pytest.fixture
def connector():
    return InMemoryDdlConnector(name="test_connector")


@pytest.fixture
def cache(connector):
    return TableSchemaCache(connector)


@pytest.fixture
def coordinator(cache, connector, stream_config):
    return EvolutionCoordinator(cache, connector, stream_config)
