"""Unit tests for snapshots, plans and the evolution state machine."""

import pytest

from cartridge_stream.connectors.base import (
    ColumnDefinition,
    IntegerType,
    StringType,
    StructType,
)
from cartridge_stream.schema_evolution.exceptions import SchemaEvolutionError
from cartridge_stream.schema_evolution.types import (
    EvolutionCycle,
    EvolutionPlan,
    EvolutionState,
    MergeOutcome,
    PlannedChange,
    TableSchemaSnapshot,
)


class TestTableSchemaSnapshot:
    """Copy-on-write snapshot behavior."""

    def test_evolve_returns_new_version(self):
        snapshot = TableSchemaSnapshot("events", (ColumnDefinition("ID", IntegerType(10)),))

        evolved = snapshot.evolve(
            [ColumnDefinition("NAME", StringType()), ColumnDefinition("ID", IntegerType(19))]
        )

        assert snapshot.column_type("ID") == IntegerType(10)
        assert evolved.version == snapshot.version + 1
        assert evolved.column_names == ["ID", "NAME"]
        assert evolved.column_type("ID") == IntegerType(19)

    def test_evolve_commits_placeholders(self):
        snapshot = TableSchemaSnapshot("events")

        evolved = snapshot.evolve([ColumnDefinition("NOTE", StringType(from_null=True))])

        assert not evolved.column_type("NOTE").is_placeholder

    def test_duplicate_columns_rejected(self):
        with pytest.raises(ValueError, match="Duplicate columns"):
            TableSchemaSnapshot(
                "events",
                (ColumnDefinition("ID", IntegerType(10)), ColumnDefinition("ID", StringType())),
            )

    def test_struct_equality_ignores_order(self):
        a = StructType((("x", IntegerType(10)), ("y", StringType())))
        b = StructType((("y", StringType()), ("x", IntegerType(10))))

        assert a == b
        assert hash(a) == hash(b)


class TestEvolutionPlan:
    def test_plan_columns_in_planned_order(self):
        plan = EvolutionPlan("events")
        plan.changes["B"] = PlannedChange("B", MergeOutcome.NEW_COLUMN, StringType(from_null=True))
        plan.changes["A"] = PlannedChange(
            "A", MergeOutcome.WIDENED, IntegerType(19), previous=IntegerType(10)
        )

        columns = plan.columns()

        assert bool(plan)
        assert [column.name for column in columns] == ["B", "A"]
        assert not columns[0].type.is_placeholder

    def test_empty_plan_is_falsy(self):
        assert not EvolutionPlan("events")


class TestEvolutionCycle:
    """Allowed state transitions."""

    def test_evolve_path(self):
        cycle = EvolutionCycle("events")
        for state in (
            EvolutionState.DIFF,
            EvolutionState.EVOLVE,
            EvolutionState.APPLIED,
            EvolutionState.DONE,
        ):
            cycle.transition(state)

        assert cycle.finished
        assert cycle.history[0] is EvolutionState.INFER

    def test_lost_race_rediffs(self):
        cycle = EvolutionCycle("events")
        cycle.transition(EvolutionState.DIFF)
        cycle.transition(EvolutionState.EVOLVE)
        cycle.transition(EvolutionState.DIFF)
        cycle.transition(EvolutionState.NO_OP)
        cycle.transition(EvolutionState.DONE)

        assert cycle.state is EvolutionState.DONE

    def test_invalid_transition(self):
        cycle = EvolutionCycle("events")

        with pytest.raises(SchemaEvolutionError, match="infer -> applied"):
            cycle.transition(EvolutionState.APPLIED)

    def test_failed_from_any_unfinished_state(self):
        cycle = EvolutionCycle("events")
        cycle.transition(EvolutionState.DIFF)
        cycle.transition(EvolutionState.FAILED)

        with pytest.raises(SchemaEvolutionError):
            cycle.transition(EvolutionState.FAILED)
