"""Schema inference and incremental evolution engine."""

from .cache import TableSchemaCache
from .config import SchemaEvolutionConfig
from .coordinator import EvolutionCoordinator
from .exceptions import (
    ClientCreationError,
    DescribeTableError,
    EvolutionNotPermitted,
    EvolutionTimeout,
    SchemaCacheError,
    SchemaEvolutionError,
    SchemaEvolutionFailed,
    TypeConflict,
    UnsupportedValueKind,
)
from .inferencer import TypeInferencer
from .merger import SchemaMerger
from .type_converter import TypeConverter
from .types import (
    BatchClassification,
    EvolutionCycle,
    EvolutionPlan,
    EvolutionState,
    MergeOutcome,
    MergeResult,
    SchemaHint,
    TableSchemaSnapshot,
)

__all__ = [
    "SchemaEvolutionConfig",
    "TableSchemaCache",
    "EvolutionCoordinator",
    "TypeInferencer",
    "SchemaMerger",
    "TypeConverter",
    "BatchClassification",
    "EvolutionCycle",
    "EvolutionPlan",
    "EvolutionState",
    "MergeOutcome",
    "MergeResult",
    "SchemaHint",
    "TableSchemaSnapshot",
    "SchemaEvolutionError",
    "UnsupportedValueKind",
    "TypeConflict",
    "EvolutionNotPermitted",
    "DescribeTableError",
    "SchemaCacheError",
    "SchemaEvolutionFailed",
    "EvolutionTimeout",
    "ClientCreationError",
]
