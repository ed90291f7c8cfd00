"""Types and enums for the schema evolution engine."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Sequence, TypedDict

from pydantic import BaseModel, Field

from ..connectors.base import ColumnDefinition, Record, TypeDescriptor
from .exceptions import SchemaEvolutionError, TypeConflict


class MergeOutcome(Enum):
    """Result kind of merging an incoming type into an existing one."""

    UNCHANGED = "unchanged"
    WIDENED = "widened"
    NEW_COLUMN = "new_column"


@dataclass(frozen=True)
class MergeResult:
    """Outcome of a merge together with the resulting descriptor."""

    outcome: MergeOutcome
    descriptor: TypeDescriptor

    @property
    def requires_ddl(self) -> bool:
        return self.outcome is not MergeOutcome.UNCHANGED


class SchemaHint(BaseModel):
    """Declared schema attached to a record (Kafka Connect JSON schema shape).

    Example:
        {"type": "struct", "fields": [{"field": "id", "type": "int8"}]}
    """

    type: str
    optional: bool = False
    name: Optional[str] = None
    field_name: Optional[str] = Field(default=None, alias="field")
    members: list["SchemaHint"] = Field(default_factory=list, alias="fields")
    items: Optional["SchemaHint"] = None
    keys: Optional["SchemaHint"] = None
    values: Optional["SchemaHint"] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    def member(self, name: str) -> Optional["SchemaHint"]:
        """Get the declared schema of a struct member by its source name."""
        for member in self.members:
            if member.field_name == name:
                return member
        return None


SchemaHint.model_rebuild()


@dataclass(frozen=True)
class TableSchemaSnapshot:
    """Immutable view of a table's columns at a given version."""

    table: str
    columns: tuple[ColumnDefinition, ...] = ()
    version: int = 0

    def __post_init__(self):
        columns = tuple(self.columns)
        names = [column.name for column in columns]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate columns in snapshot of '{self.table}': {names}")
        object.__setattr__(self, "columns", columns)

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    def get(self, name: str) -> Optional[ColumnDefinition]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def column_type(self, name: str) -> Optional[TypeDescriptor]:
        column = self.get(name)
        return column.type if column else None

    def __contains__(self, name: object) -> bool:
        return any(column.name == name for column in self.columns)

    def __len__(self) -> int:
        return len(self.columns)

    def evolve(self, changes: Sequence[ColumnDefinition]) -> "TableSchemaSnapshot":
        """Return a new snapshot with the given columns added or replaced.

        Existing columns keep their position; new columns are appended.
        """
        by_name = {change.name: replace(change, type=change.type.committed()) for change in changes}
        columns = []
        for column in self.columns:
            columns.append(by_name.pop(column.name, column))
        columns.extend(by_name.values())
        return TableSchemaSnapshot(self.table, tuple(columns), self.version + 1)


@dataclass(frozen=True)
class PlannedChange:
    """A single column addition or widening."""

    column: str
    outcome: MergeOutcome
    target: TypeDescriptor
    previous: Optional[TypeDescriptor] = None


@dataclass
class EvolutionPlan:
    """Column changes needed to accept one batch."""

    table: str
    changes: dict[str, PlannedChange] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    @property
    def column_names(self) -> list[str]:
        return list(self.changes)

    def columns(self) -> list[ColumnDefinition]:
        """Target column definitions, in the order they were planned."""
        return [
            ColumnDefinition(name=change.column, type=change.target.committed())
            for change in self.changes.values()
        ]


class EvolutionState(Enum):
    """States of one evolution cycle for a (table, batch) pair."""

    INFER = "infer"
    DIFF = "diff"
    NO_OP = "no_op"
    EVOLVE = "evolve"
    APPLIED = "applied"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[EvolutionState, set[EvolutionState]] = {
    EvolutionState.INFER: {EvolutionState.DIFF},
    EvolutionState.DIFF: {EvolutionState.NO_OP, EvolutionState.EVOLVE},
    # EVOLVE -> DIFF after a lost race, EVOLVE -> NO_OP when another worker
    # already applied every change
    EvolutionState.EVOLVE: {EvolutionState.APPLIED, EvolutionState.NO_OP, EvolutionState.DIFF},
    EvolutionState.NO_OP: {EvolutionState.DONE},
    EvolutionState.APPLIED: {EvolutionState.DONE},
    EvolutionState.DONE: set(),
    EvolutionState.FAILED: set(),
}


@dataclass
class EvolutionCycle:
    """Tracks the state machine of a single batch."""

    table: str
    state: EvolutionState = EvolutionState.INFER
    history: list[EvolutionState] = field(default_factory=lambda: [EvolutionState.INFER])
    # Columns of the latest plan, reported if the batch times out
    planned: list[str] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.state in (EvolutionState.DONE, EvolutionState.FAILED)

    def transition(self, target: EvolutionState) -> None:
        allowed = _TRANSITIONS[self.state]
        if target is EvolutionState.FAILED and not self.finished:
            allowed = allowed | {EvolutionState.FAILED}
        if target not in allowed:
            raise SchemaEvolutionError(
                f"Invalid evolution transition for '{self.table}': "
                f"{self.state.value} -> {target.value}"
            )
        self.state = target
        self.history.append(target)


@dataclass
class BatchClassification:
    """Result of evolving a table for one batch.

    ``writable`` records may be written now. ``conflicted`` records hold a
    field whose type cannot be reconciled with the committed column and must
    be diverted. ``rejected`` records could not be typed at all, or needed a
    schema change that is not permitted.
    """

    table: str
    writable: list[Record] = field(default_factory=list)
    conflicted: list[tuple[Record, str, TypeConflict]] = field(default_factory=list)
    rejected: list[tuple[Record, str, SchemaEvolutionError]] = field(default_factory=list)
    state: EvolutionState = EvolutionState.DONE
    evolved: list[ColumnDefinition] = field(default_factory=list)
    snapshot_version: int = 0


class CacheStats(TypedDict):
    """Per-table statistics exposed by the schema cache."""

    columns: int
    version: int
    evolving: bool
