"""Process-wide cache of table schema snapshots."""

import asyncio
from typing import Optional

import structlog

from ..connectors.base import DdlConnector
from .exceptions import DescribeTableError, SchemaCacheError, TypeConflict
from .merger import SchemaMerger
from .types import CacheStats, TableSchemaSnapshot

logger = structlog.get_logger(__name__)


class TableSchemaCache:
    """Holds the latest known column set of every tracked table.

    Snapshots are immutable and replaced wholesale, so readers never observe
    a partially applied evolution. Loading a cold table does not take the
    table lock; two concurrent warm-ups both describe the table and the first
    one to finish wins.
    """

    def __init__(self, connector: DdlConnector, merger: Optional[SchemaMerger] = None):
        self.connector = connector
        self.merger = merger or SchemaMerger()
        self._snapshots: dict[str, TableSchemaSnapshot] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.logger = logger.bind(component="schema_cache")

    async def current(self, table: str) -> TableSchemaSnapshot:
        """Get the current snapshot, loading it on first access.

        Raises:
            DescribeTableError: The table could not be described
        """
        snapshot = self._snapshots.get(table)
        if snapshot is not None:
            return snapshot

        loaded = await self._describe(table, version=1)
        # Another warm-up may have finished while this one was describing
        return self._snapshots.setdefault(table, loaded)

    async def refresh(self, table: str) -> TableSchemaSnapshot:
        """Re-describe a table and replace its snapshot.

        On failure the prior snapshot is kept.

        Raises:
            DescribeTableError: The table could not be described
        """
        previous = self._snapshots.get(table)
        version = previous.version + 1 if previous else 1
        snapshot = await self._describe(table, version=version)

        # Another worker may have replaced the snapshot meanwhile
        latest = self._snapshots.get(table)
        if latest is not None and latest.version >= snapshot.version:
            snapshot = TableSchemaSnapshot(table, snapshot.columns, latest.version + 1)

        self._snapshots[table] = snapshot
        self.logger.debug(
            "Refreshed table schema", table=table, version=snapshot.version, columns=len(snapshot)
        )
        return snapshot

    def replace(self, table: str, snapshot: TableSchemaSnapshot) -> None:
        """Atomically swap in a new snapshot.

        Raises:
            SchemaCacheError: The snapshot is for another table, does not advance
                the version, drops a known column or narrows one
        """
        if snapshot.table != table:
            raise SchemaCacheError(
                f"Snapshot for '{snapshot.table}' cannot replace table '{table}'"
            )

        previous = self._snapshots.get(table)
        if previous is not None:
            if snapshot.version <= previous.version:
                raise SchemaCacheError(
                    f"Snapshot version {snapshot.version} for '{table}' does not "
                    f"advance past {previous.version}"
                )
            for column in previous.columns:
                replacement = snapshot.get(column.name)
                if replacement is None:
                    raise SchemaCacheError(
                        f"Snapshot for '{table}' drops column '{column.name}'"
                    )
                try:
                    result = self.merger.merge(replacement.type, column.type, column.name)
                except TypeConflict as e:
                    raise SchemaCacheError(
                        f"Snapshot for '{table}' changes the type of '{column.name}'"
                    ) from e
                if result.requires_ddl:
                    raise SchemaCacheError(
                        f"Snapshot for '{table}' narrows column '{column.name}'"
                    )

        self._snapshots[table] = snapshot

    def lock(self, table: str) -> asyncio.Lock:
        """Get the lock guarding evolution of a table."""
        if table not in self._locks:
            self._locks[table] = asyncio.Lock()
        return self._locks[table]

    def evict(self, table: str) -> None:
        """Forget a table that is no longer tracked."""
        self._snapshots.pop(table, None)
        lock = self._locks.get(table)
        if lock is not None and not lock.locked():
            del self._locks[table]
        self.logger.info("Evicted table schema", table=table)

    def tables(self) -> list[str]:
        return sorted(self._snapshots)

    def stats(self) -> dict[str, CacheStats]:
        """Per-table statistics for monitoring and the CLI."""
        return {
            table: CacheStats(
                columns=len(snapshot),
                version=snapshot.version,
                evolving=self._locks[table].locked() if table in self._locks else False,
            )
            for table, snapshot in sorted(self._snapshots.items())
        }

    async def _describe(self, table: str, version: int) -> TableSchemaSnapshot:
        try:
            columns = await self.connector.describe_table(table)
        except Exception as e:
            self.logger.error("Failed to describe table", table=table, error=str(e))
            raise DescribeTableError(table, e) from e
        return TableSchemaSnapshot(table, tuple(columns), version)


__all__ = ["TableSchemaCache"]
