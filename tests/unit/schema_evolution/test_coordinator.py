"""Unit tests for the evolution coordinator."""

import asyncio

import pytest

from cartridge_stream.connectors.base import (
    ColumnDefinition,
    DdlAlreadyExistsError,
    DdlFatalError,
    DdlThrottledError,
    IntegerType,
    Record,
    StringType,
)
from cartridge_stream.connectors.memory import InMemoryDdlConnector
from cartridge_stream.core.config import StreamConfig
from cartridge_stream.monitoring.metrics import MetricsCollector
from cartridge_stream.schema_evolution.cache import TableSchemaCache
from cartridge_stream.schema_evolution.coordinator import EvolutionCoordinator
from cartridge_stream.schema_evolution.exceptions import (
    DescribeTableError,
    EvolutionNotPermitted,
    EvolutionTimeout,
    SchemaEvolutionFailed,
    TypeConflict,
    UnsupportedValueKind,
)
from cartridge_stream.schema_evolution.types import EvolutionState


class _DisconnectingConnector(InMemoryDdlConnector):
    """Loses its connection on every ALTER request."""

    async def alter_table_add_or_widen_columns(self, table, columns):
        self.alter_requests += 1
        raise ConnectionError("socket closed")


def _int8_record(value):
    return Record(
        value={"id_int8": value},
        schema={"type": "struct", "fields": [{"field": "id_int8", "type": "int8"}]},
    )


class TestEvolutionScenarios:
    """End-to-end behavior against the in-memory store."""

    @pytest.mark.asyncio
    async def test_new_column_added(self, coordinator, connector):
        connector.create_table("events", {"ID": "NUMBER(19,0)"})

        result = await coordinator.evolve_and_classify(
            "events", [Record(value={"id": 1, "name": "alice"})]
        )

        assert result.state is EvolutionState.DONE
        assert len(result.writable) == 1
        assert [column.name for column in result.evolved] == ["NAME"]
        assert connector.column_sql("events")["NAME"] == "VARCHAR(16777216)"
        assert connector.statements[-1] == (
            "ALTER TABLE events ADD COLUMN NAME VARCHAR(16777216)"
        )

    @pytest.mark.asyncio
    async def test_new_table_gets_metadata_column(self, coordinator, connector):
        await coordinator.evolve_and_classify("events", [Record(value={"a": True})])

        assert list(connector.column_sql("events")) == ["RECORD_METADATA", "A"]

    @pytest.mark.asyncio
    async def test_declared_int8_widened_by_schemaless_record(self, coordinator, connector, cache):
        await coordinator.evolve_and_classify("events", [_int8_record(1)])
        assert connector.column_sql("events")["ID_INT8"] == "NUMBER(10,0)"

        result = await coordinator.evolve_and_classify(
            "events", [Record(value={"id_int8": 2**40})]
        )

        assert len(result.writable) == 1
        assert connector.column_sql("events")["ID_INT8"] == "NUMBER(19,0)"
        snapshot = await cache.current("events")
        assert snapshot.column_type("ID_INT8") == IntegerType(19)
        assert "SET DATA TYPE NUMBER(19,0)" in connector.statements[-1]

    @pytest.mark.asyncio
    async def test_struct_after_integer_conflicts(self, coordinator, connector):
        await coordinator.evolve_and_classify("events", [Record(value={"object": 1})])
        requests = connector.alter_requests

        record = Record(value={"object": {"nested_object": {"x": 1}}})
        result = await coordinator.evolve_and_classify("events", [record])

        assert result.writable == []
        assert len(result.conflicted) == 1
        conflicted_record, path, error = result.conflicted[0]
        assert conflicted_record is record
        assert path == "OBJECT"
        assert isinstance(error, TypeConflict)
        assert connector.alter_requests == requests
        assert connector.column_sql("events")["OBJECT"] == "NUMBER(19,0)"

    @pytest.mark.asyncio
    async def test_conflict_with_earlier_record_in_batch(self, coordinator, connector):
        first = Record(value={"a": 1})
        second = Record(value={"a": {"x": 1}})

        result = await coordinator.evolve_and_classify("events", [first, second])

        assert result.writable == [first]
        assert [record for record, _, _ in result.conflicted] == [second]
        assert connector.column_sql("events")["A"] == "NUMBER(19,0)"

    @pytest.mark.asyncio
    async def test_null_then_value_in_same_batch(self, coordinator, connector):
        result = await coordinator.evolve_and_classify(
            "events", [Record(value={"score": None}), Record(value={"score": 3})]
        )

        assert len(result.writable) == 2
        assert connector.column_sql("events")["SCORE"] == "NUMBER(19,0)"

    @pytest.mark.asyncio
    async def test_null_only_column_is_string(self, coordinator, connector):
        await coordinator.evolve_and_classify("events", [Record(value={"note": None})])

        assert connector.column_sql("events")["NOTE"] == "VARCHAR(16777216)"

    @pytest.mark.asyncio
    async def test_struct_fields_unioned(self, coordinator, connector):
        await coordinator.evolve_and_classify("events", [Record(value={"obj": {"a": 1}})])

        await coordinator.evolve_and_classify("events", [Record(value={"obj": {"b": "x"}})])

        assert connector.column_sql("events")["OBJ"] == (
            "OBJECT(a NUMBER(19,0), b VARCHAR(16777216))"
        )

    @pytest.mark.asyncio
    async def test_unsupported_record_rejected(self, coordinator, connector):
        good = Record(value={"a": 1})
        bad = Record(value="not an object")

        result = await coordinator.evolve_and_classify("events", [good, bad])

        assert result.writable == [good]
        assert len(result.rejected) == 1
        assert result.rejected[0][0] is bad
        assert isinstance(result.rejected[0][2], UnsupportedValueKind)

    @pytest.mark.asyncio
    async def test_non_string_key_rejected_without_failing_batch(self, coordinator, connector):
        good = Record(value={"id": 1})
        bad = Record(value={1: "x"})

        result = await coordinator.evolve_and_classify("events", [good, bad])

        assert result.state is EvolutionState.DONE
        assert result.writable == [good]
        assert [rejected[0] for rejected in result.rejected] == [bad]
        assert isinstance(result.rejected[0][2], UnsupportedValueKind)
        assert "ID" in connector.column_sql("events")


class TestIdempotence:
    """Re-running a batch never issues DDL again."""

    @pytest.mark.asyncio
    async def test_second_run_is_no_op(self, coordinator, connector):
        batch = [Record(value={"a": 1, "b": {"c": [1.5]}})]

        first = await coordinator.evolve_and_classify("events", batch)
        requests = connector.alter_requests
        second = await coordinator.evolve_and_classify("events", batch)

        assert first.evolved
        assert second.evolved == []
        assert connector.alter_requests == requests
        assert second.writable == batch

    @pytest.mark.asyncio
    async def test_narrower_values_do_not_shrink_columns(self, coordinator, connector):
        connector.create_table("events", {"ID_INT8": "NUMBER(19,0)"})

        result = await coordinator.evolve_and_classify("events", [_int8_record(1)])

        assert result.evolved == []
        assert connector.column_sql("events")["ID_INT8"] == "NUMBER(19,0)"


class TestConcurrency:
    """Concurrent batches against the same table."""

    @pytest.mark.asyncio
    async def test_no_double_ddl(self, stream_config):
        connector = InMemoryDdlConnector(ddl_delay_seconds=0.05)
        cache = TableSchemaCache(connector)
        coordinator = EvolutionCoordinator(cache, connector, stream_config)
        batches = [[Record(value={"id": i, "name": f"n{i}"})] for i in range(10)]

        results = await asyncio.gather(
            *(coordinator.evolve_and_classify("events", batch) for batch in batches)
        )

        assert connector.alter_requests == 1
        assert all(len(result.writable) == 1 for result in results)
        assert sum(1 for result in results if result.evolved) == 1
        snapshot = await cache.current("events")
        assert snapshot.column_names == ["RECORD_METADATA", "ID", "NAME"]

    @pytest.mark.asyncio
    async def test_waiting_worker_widens_further(self, stream_config):
        connector = InMemoryDdlConnector(ddl_delay_seconds=0.05)
        cache = TableSchemaCache(connector)
        coordinator = EvolutionCoordinator(cache, connector, stream_config)

        await asyncio.gather(
            coordinator.evolve_and_classify("events", [_int8_record(1)]),
            coordinator.evolve_and_classify("events", [Record(value={"id_int8": 1})]),
        )

        assert connector.column_sql("events")["ID_INT8"] == "NUMBER(19,0)"

    @pytest.mark.asyncio
    async def test_tables_evolve_independently(self, stream_config):
        connector = InMemoryDdlConnector(ddl_delay_seconds=0.05)
        cache = TableSchemaCache(connector)
        coordinator = EvolutionCoordinator(cache, connector, stream_config)

        await asyncio.gather(
            coordinator.evolve_and_classify("a", [Record(value={"x": 1})]),
            coordinator.evolve_and_classify("b", [Record(value={"x": "s"})]),
        )

        assert connector.column_sql("a")["X"] == "NUMBER(19,0)"
        assert connector.column_sql("b")["X"] == "VARCHAR(16777216)"


class TestDdlFailures:
    """Retry and failure handling for DDL requests."""

    @pytest.mark.asyncio
    async def test_throttled_request_retried(self, coordinator, connector):
        connector.inject_failure(DdlThrottledError("events"))

        result = await coordinator.evolve_and_classify("events", [Record(value={"a": 1})])

        assert connector.alter_requests == 2
        assert result.state is EvolutionState.DONE
        assert "A" in connector.column_sql("events")

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, coordinator, connector, cache):
        connector.inject_failure(DdlThrottledError("events"), times=3)

        with pytest.raises(SchemaEvolutionFailed) as exc_info:
            await coordinator.evolve_and_classify("events", [Record(value={"a": 1})])

        assert exc_info.value.table == "events"
        assert exc_info.value.columns == ["A"]
        assert isinstance(exc_info.value.__cause__, DdlThrottledError)
        assert connector.alter_requests == 3
        assert "A" not in await cache.current("events")

    @pytest.mark.asyncio
    async def test_fatal_error_not_retried(self, coordinator, connector):
        connector.inject_failure(DdlFatalError("events", ["A"], "permission denied"))

        with pytest.raises(SchemaEvolutionFailed, match="permission denied") as exc_info:
            await coordinator.evolve_and_classify("events", [Record(value={"a": 1})])

        assert isinstance(exc_info.value.__cause__, DdlFatalError)
        assert connector.alter_requests == 1

    @pytest.mark.asyncio
    async def test_already_exists_refreshes_schema(self, coordinator, connector, cache):
        await cache.current("events")
        # Another writer adds the column behind the cache's back
        await connector.alter_table_add_or_widen_columns(
            "events", [ColumnDefinition("NAME", StringType())]
        )

        result = await coordinator.evolve_and_classify("events", [Record(value={"name": "x"})])

        assert result.state is EvolutionState.DONE
        assert result.evolved == []
        assert len(result.writable) == 1
        assert "NAME" in await cache.current("events")

    @pytest.mark.asyncio
    async def test_second_already_exists_fails(self, coordinator, connector):
        connector.inject_failure(DdlAlreadyExistsError("events", ["A"]), times=2)

        with pytest.raises(SchemaEvolutionFailed, match="already exist"):
            await coordinator.evolve_and_classify("events", [Record(value={"a": 1})])

    @pytest.mark.asyncio
    async def test_unexpected_connector_error_fails_batch(self, stream_config):
        connector = _DisconnectingConnector()
        coordinator = EvolutionCoordinator(TableSchemaCache(connector), connector, stream_config)

        with pytest.raises(SchemaEvolutionFailed, match="socket closed") as exc_info:
            await coordinator.evolve_and_classify("events", [Record(value={"a": 1})])

        assert exc_info.value.table == "events"
        assert exc_info.value.columns == ["A"]
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert connector.alter_requests == 1

    @pytest.mark.asyncio
    async def test_describe_failure_fails_batch(self, stream_config):
        connector = InMemoryDdlConnector(auto_create=False)
        coordinator = EvolutionCoordinator(TableSchemaCache(connector), connector, stream_config)

        with pytest.raises(DescribeTableError, match="Failed to describe table 'missing'"):
            await coordinator.evolve_and_classify("missing", [Record(value={"a": 1})])


class TestTimeoutAndPermissions:
    """Batch timeout and disabled evolution."""

    @pytest.mark.asyncio
    async def test_timeout_lets_ddl_finish(self):
        config = StreamConfig(schema_evolution={"batch_timeout_seconds": 0.05})
        connector = InMemoryDdlConnector(ddl_delay_seconds=0.2)
        cache = TableSchemaCache(connector)
        coordinator = EvolutionCoordinator(cache, connector, config)

        with pytest.raises(EvolutionTimeout) as exc_info:
            await coordinator.evolve_and_classify("events", [Record(value={"a": 1})])

        assert exc_info.value.table == "events"
        assert exc_info.value.columns == ["A"]
        await asyncio.sleep(0.4)
        assert "A" in connector.column_sql("events")
        assert "A" in await cache.current("events")

    @pytest.mark.asyncio
    async def test_timeout_while_waiting_for_lock_issues_no_ddl(self):
        connector = InMemoryDdlConnector(ddl_delay_seconds=0.2)
        cache = TableSchemaCache(connector)
        slow = EvolutionCoordinator(cache, connector, StreamConfig())
        impatient = EvolutionCoordinator(
            cache, connector, StreamConfig(schema_evolution={"batch_timeout_seconds": 0.05})
        )

        holder = asyncio.create_task(
            slow.evolve_and_classify("events", [Record(value={"a": 1})])
        )
        await asyncio.sleep(0.01)
        with pytest.raises(EvolutionTimeout) as exc_info:
            await impatient.evolve_and_classify("events", [Record(value={"b": 1})])
        await holder
        await asyncio.sleep(0.3)

        assert exc_info.value.columns == ["B"]
        assert connector.alter_requests == 1
        assert "B" not in connector.column_sql("events")
        assert not cache.lock("events").locked()

    @pytest.mark.asyncio
    async def test_evolution_disabled(self, connector):
        config = StreamConfig(schema_evolution={"enabled": False})
        connector.create_table("events", {"ID": "NUMBER(19,0)"})
        coordinator = EvolutionCoordinator(TableSchemaCache(connector), connector, config)
        fits = Record(value={"id": 1})
        needs_column = Record(value={"id": 2, "name": "x"})

        result = await coordinator.evolve_and_classify("events", [fits, needs_column])

        assert result.writable == [fits]
        assert result.rejected[0][0] is needs_column
        assert result.rejected[0][1] == "NAME"
        assert isinstance(result.rejected[0][2], EvolutionNotPermitted)
        assert connector.alter_requests == 0

    @pytest.mark.asyncio
    async def test_evolution_disabled_keeps_records_fitting_committed_column(self, connector):
        config = StreamConfig(schema_evolution={"enabled": False})
        connector.create_table("events", {"ID": "NUMBER(10,0)"})
        coordinator = EvolutionCoordinator(TableSchemaCache(connector), connector, config)

        def _record(value, declared):
            return Record(
                value={"id": value},
                schema={"type": "struct", "fields": [{"field": "id", "type": declared}]},
            )

        narrow = _record(1, "int32")
        wide = _record(2**40, "int64")

        result = await coordinator.evolve_and_classify("events", [narrow, wide])

        assert result.writable == [narrow]
        assert [rejected[0] for rejected in result.rejected] == [wide]
        assert connector.alter_requests == 0

    @pytest.mark.asyncio
    async def test_excluded_table(self, connector):
        config = StreamConfig(schema_evolution={"excluded_tables": ["audit"]})
        coordinator = EvolutionCoordinator(TableSchemaCache(connector), connector, config)

        result = await coordinator.evolve_and_classify("audit", [Record(value={"a": 1})])

        assert result.writable == []
        assert len(result.rejected) == 1
        assert connector.alter_requests == 0


class TestMetrics:
    """Metrics recorded by the coordinator."""

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, cache, connector, stream_config):
        metrics = MetricsCollector()
        coordinator = EvolutionCoordinator(cache, connector, stream_config, metrics)

        await coordinator.evolve_and_classify("events", [Record(value={"a": 1})])
        await coordinator.evolve_and_classify("events", [Record(value={"a": {"b": 1}})])

        assert metrics.get_sample_value(
            "cartridge_stream_schema_changes_total",
            {"table": "events", "change_type": "new_column"},
        ) == 1
        assert metrics.get_sample_value(
            "cartridge_stream_ddl_attempts_total", {"table": "events", "outcome": "applied"}
        ) == 1
        assert metrics.get_sample_value(
            "cartridge_stream_type_conflicts_total", {"table": "events"}
        ) == 1
        assert metrics.get_sample_value("cartridge_stream_cached_tables") == 1
