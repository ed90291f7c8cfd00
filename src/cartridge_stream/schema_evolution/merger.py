"""Merging of inferred column types into existing ones."""

from typing import Optional

import structlog

from ..connectors.base import (
    ArrayType,
    FloatType,
    IntegerType,
    MapType,
    StringType,
    StructType,
    TypeDescriptor,
    TypeKind,
)
from .exceptions import TypeConflict
from .types import MergeOutcome, MergeResult

logger = structlog.get_logger(__name__)


class SchemaMerger:
    """Combines two descriptors for the same logical column.

    Merging only ever widens: integer widths and string lengths grow, structs
    gain fields. A change of kind is never resolved here; it is reported as a
    ``TypeConflict`` and the existing type stays authoritative.
    """

    def merge(
        self,
        existing: Optional[TypeDescriptor],
        incoming: TypeDescriptor,
        path: str = "",
    ) -> MergeResult:
        """Merge ``incoming`` into ``existing``.

        Args:
            existing: Committed (or previously planned) type, None for a new column
            incoming: Newly inferred type
            path: Field path used in conflict reports

        Returns:
            The merge outcome and resulting descriptor

        Raises:
            TypeConflict: The two types have different kinds
        """
        if existing is None:
            return MergeResult(MergeOutcome.NEW_COLUMN, incoming)

        # A null carries no type information, any column accepts it
        if incoming.is_placeholder:
            return MergeResult(MergeOutcome.UNCHANGED, existing)

        # Placeholders only exist before a column is committed
        if existing.is_placeholder:
            return MergeResult(MergeOutcome.WIDENED, incoming)

        if existing.kind is not incoming.kind:
            raise TypeConflict(path, existing, incoming)

        if isinstance(existing, IntegerType):
            if incoming.width <= existing.width:
                return MergeResult(MergeOutcome.UNCHANGED, existing)
            return MergeResult(MergeOutcome.WIDENED, IntegerType(incoming.width))

        if isinstance(existing, StringType):
            if incoming.max_length <= existing.max_length:
                return MergeResult(MergeOutcome.UNCHANGED, existing)
            return MergeResult(MergeOutcome.WIDENED, StringType(incoming.max_length))

        if isinstance(existing, StructType):
            return self._merge_struct(existing, incoming, path)

        if isinstance(existing, ArrayType):
            element = self.merge(existing.element, incoming.element, f"{path}[]")
            if not element.requires_ddl:
                return MergeResult(MergeOutcome.UNCHANGED, existing)
            return MergeResult(MergeOutcome.WIDENED, ArrayType(element.descriptor))

        if isinstance(existing, MapType):
            value = self.merge(existing.value, incoming.value, f"{path}{{}}")
            if not value.requires_ddl:
                return MergeResult(MergeOutcome.UNCHANGED, existing)
            return MergeResult(MergeOutcome.WIDENED, MapType(value.descriptor))

        # BOOLEAN and FLOAT carry no parameters
        return MergeResult(MergeOutcome.UNCHANGED, existing)

    def merge_observations(
        self, first: TypeDescriptor, second: TypeDescriptor, path: str = ""
    ) -> TypeDescriptor:
        """Fold two observations of the same value inside one record or batch.

        Unlike ``merge`` this never fails: integers mixed with floats widen to
        FLOAT and any other kind clash collapses to a string. Used for the
        elements of heterogeneous arrays.
        """
        try:
            return self.merge(first, second, path).descriptor
        except TypeConflict:
            kinds = {first.kind, second.kind}
            if kinds == {TypeKind.INTEGER, TypeKind.FLOAT}:
                return FloatType()
            logger.debug(
                "Collapsing heterogeneous values to string",
                path=path,
                first=str(first),
                second=str(second),
            )
            return StringType()

    def _merge_struct(self, existing: StructType, incoming: StructType, path: str) -> MergeResult:
        merged: list[tuple[str, TypeDescriptor]] = []
        changed = False

        for name, descriptor in existing.fields:
            other = incoming.get(name)
            if other is None:
                merged.append((name, descriptor))
                continue
            result = self.merge(descriptor, other, _join(path, name))
            changed = changed or result.requires_ddl
            merged.append((name, result.descriptor))

        for name, descriptor in incoming.fields:
            if existing.get(name) is None:
                merged.append((name, descriptor))
                changed = True

        if not changed:
            return MergeResult(MergeOutcome.UNCHANGED, existing)
        return MergeResult(MergeOutcome.WIDENED, StructType(tuple(merged)))


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


__all__ = ["SchemaMerger"]
