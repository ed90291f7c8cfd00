"""Drives schema evolution for batches of records."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Sequence

import structlog

from ..connectors.base import (
    DdlAlreadyExistsError,
    DdlConnector,
    DdlError,
    DdlThrottledError,
    Record,
    TypeDescriptor,
)
from .cache import TableSchemaCache
from .exceptions import (
    DescribeTableError,
    EvolutionNotPermitted,
    EvolutionTimeout,
    SchemaEvolutionError,
    SchemaEvolutionFailed,
    TypeConflict,
    UnsupportedValueKind,
)
from .inferencer import TypeInferencer
from .types import (
    BatchClassification,
    EvolutionCycle,
    EvolutionPlan,
    EvolutionState,
    MergeOutcome,
    PlannedChange,
    TableSchemaSnapshot,
)

if TYPE_CHECKING:
    from ..core.config import StreamConfig
    from ..monitoring.metrics import MetricsCollector

logger = structlog.get_logger(__name__)

InferredRecord = tuple[Record, dict[str, TypeDescriptor]]


@dataclass
class _Diff:
    """Plan computed for a set of inferred records against one snapshot."""

    plan: EvolutionPlan
    conflicted: list[tuple[Record, str, TypeConflict]] = field(default_factory=list)
    accepted: list[InferredRecord] = field(default_factory=list)


@dataclass
class _EvolveResult:
    snapshot: TableSchemaSnapshot
    plan: EvolutionPlan
    conflicted: list[tuple[Record, str, TypeConflict]]
    accepted: list[InferredRecord]


class EvolutionCoordinator:
    """Evolves a table so that a batch of records can be written to it.

    Each batch goes through INFER, DIFF and then either NO_OP or EVOLVE.
    Evolution of one table is serialized by the cache's per-table lock; a
    worker that waited on the lock re-reads the snapshot and recomputes its
    plan, so the same change is never submitted twice.
    """

    def __init__(
        self,
        cache: TableSchemaCache,
        connector: DdlConnector,
        config: "StreamConfig",
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.cache = cache
        self.connector = connector
        self.config = config
        self.metrics = metrics
        self.merger = cache.merger
        self.inferencer = TypeInferencer(self.merger)
        self.logger = logger.bind(component="evolution_coordinator")

    async def evolve_and_classify(
        self, table: str, batch: Sequence[Record]
    ) -> BatchClassification:
        """Evolve ``table`` as needed and classify every record of the batch.

        Args:
            table: Target table name
            batch: Records destined for the table

        Returns:
            Writable, conflicted and rejected records

        Raises:
            SchemaEvolutionFailed: DDL could not be applied; retry the whole batch
            EvolutionTimeout: The batch exceeded ``batch_timeout_seconds``
            DescribeTableError: The table could not be described
        """
        timeout = self.config.schema_evolution.batch_timeout_seconds
        cycle = EvolutionCycle(table)
        started = time.monotonic()
        log = self.logger.bind(table=table, batch_size=len(batch))

        try:
            classification = await asyncio.wait_for(
                self._run(table, list(batch), cycle), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            self._fail(cycle)
            log.error("Schema evolution timed out", timeout_seconds=timeout)
            self._observe(table, cycle, started)
            raise EvolutionTimeout(table, timeout, cycle.planned) from e
        except SchemaEvolutionError as e:
            self._fail(cycle)
            log.error("Schema evolution failed", error=str(e), history=_history(cycle))
            self._observe(table, cycle, started)
            raise

        self._observe(table, cycle, started)
        log.debug(
            "Classified batch",
            writable=len(classification.writable),
            conflicted=len(classification.conflicted),
            rejected=len(classification.rejected),
            history=_history(cycle),
        )
        return classification

    async def _run(
        self, table: str, batch: list[Record], cycle: EvolutionCycle
    ) -> BatchClassification:
        classification = BatchClassification(table=table)

        # INFER
        inferred: list[InferredRecord] = []
        for record in batch:
            try:
                inferred.append((record, self.inferencer.infer_record(record)))
            except UnsupportedValueKind as e:
                classification.rejected.append((record, e.field_path, e))
        if self.metrics:
            self.metrics.record_rejected(table, "unsupported", len(classification.rejected))

        # DIFF
        self._advance(cycle, EvolutionState.DIFF)
        snapshot = await self.cache.current(table)
        diff = self._diff(snapshot, inferred)
        classification.conflicted.extend(diff.conflicted)

        if not diff.plan:
            self._advance(cycle, EvolutionState.NO_OP)
            return self._finish(classification, cycle, snapshot, diff.accepted)

        if not self.config.schema_evolution.is_evolution_allowed(table):
            self._advance(cycle, EvolutionState.NO_OP)
            accepted = self._reject_not_permitted(snapshot, diff, classification)
            return self._finish(classification, cycle, snapshot, accepted)

        # EVOLVE. Waiting for the table lock may be cancelled; once the lock
        # is held the evolution runs shielded so DDL in flight is never cancelled
        self._advance(cycle, EvolutionState.EVOLVE)
        cycle.planned = diff.plan.column_names
        lock = self.cache.lock(table)
        await lock.acquire()
        task = asyncio.ensure_future(self._evolve_locked(table, diff.accepted, cycle, lock))
        try:
            result = await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(self._report_detached(table))
            raise

        classification.conflicted.extend(result.conflicted)
        classification.evolved = result.plan.columns()
        return self._finish(classification, cycle, result.snapshot, result.accepted)

    async def _evolve_locked(
        self,
        table: str,
        candidates: list[InferredRecord],
        cycle: EvolutionCycle,
        lock: asyncio.Lock,
    ) -> _EvolveResult:
        """Evolve the table while holding ``lock``, releasing it when done."""
        log = self.logger.bind(table=table)

        try:
            # Another worker may have evolved the table while this one waited
            snapshot = await self.cache.current(table)
            diff = self._diff(snapshot, candidates)
            cycle.planned = diff.plan.column_names
            conflicted = list(diff.conflicted)
            refreshed = False

            while True:
                if not diff.plan:
                    self._advance(cycle, EvolutionState.NO_OP)
                    return _EvolveResult(snapshot, diff.plan, conflicted, diff.accepted)

                try:
                    await self._apply(table, diff.plan)
                except DdlAlreadyExistsError as e:
                    if refreshed:
                        raise SchemaEvolutionFailed(
                            table, diff.plan.column_names, f"columns already exist: {e}"
                        ) from e
                    refreshed = True
                    log.info(
                        "Columns already exist, refreshing table schema",
                        columns=diff.plan.column_names,
                    )
                    self._advance(cycle, EvolutionState.DIFF)
                    try:
                        snapshot = await self.cache.refresh(table)
                    except DescribeTableError as describe_error:
                        raise SchemaEvolutionFailed(
                            table, diff.plan.column_names, str(describe_error)
                        ) from describe_error
                    diff = self._diff(snapshot, diff.accepted)
                    cycle.planned = diff.plan.column_names
                    conflicted.extend(diff.conflicted)
                    if diff.plan:
                        self._advance(cycle, EvolutionState.EVOLVE)
                    continue

                evolved = snapshot.evolve(diff.plan.columns())
                self.cache.replace(table, evolved)
                self._advance(cycle, EvolutionState.APPLIED)
                self._record_applied(table, diff.plan)
                log.info(
                    "Applied schema evolution",
                    columns=diff.plan.column_names,
                    version=evolved.version,
                )
                return _EvolveResult(evolved, diff.plan, conflicted, diff.accepted)
        finally:
            lock.release()

    async def _apply(self, table: str, plan: EvolutionPlan) -> None:
        """Submit the plan as one DDL request, retrying transient failures."""
        error_handling = self.config.error_handling
        columns = plan.columns()
        delay = error_handling.initial_backoff_seconds
        attempt = 0

        while True:
            try:
                await self.connector.alter_table_add_or_widen_columns(table, columns)
            except DdlThrottledError as e:
                attempt += 1
                self._record_ddl(table, "throttled")
                if attempt > error_handling.max_retries:
                    raise SchemaEvolutionFailed(
                        table,
                        plan.column_names,
                        f"retries exhausted after {attempt} attempts: {e}",
                    ) from e
                self.logger.warning(
                    "DDL throttled, retrying",
                    table=table,
                    attempt=attempt,
                    delay_seconds=delay,
                )
                await asyncio.sleep(delay)
                delay = min(delay * error_handling.backoff_factor, error_handling.max_backoff_seconds)
                continue
            except DdlAlreadyExistsError:
                self._record_ddl(table, "already_exists")
                raise
            except DdlError as e:
                self._record_ddl(table, "fatal")
                raise SchemaEvolutionFailed(table, plan.column_names, str(e)) from e
            except Exception as e:
                self._record_ddl(table, "fatal")
                raise SchemaEvolutionFailed(
                    table, plan.column_names, f"unexpected connector error: {e!r}"
                ) from e

            self._record_ddl(table, "applied")
            return

    def _diff(self, snapshot: TableSchemaSnapshot, inferred: list[InferredRecord]) -> _Diff:
        """Fold every record into one plan against ``snapshot``.

        A record whose field conflicts with the snapshot, or with the type
        planned for a new column by an earlier record, is set aside whole.
        """
        diff = _Diff(plan=EvolutionPlan(snapshot.table))

        for record, columns in inferred:
            tentative: dict[str, PlannedChange] = {}
            conflict: Optional[TypeConflict] = None

            for column, descriptor in columns.items():
                planned = diff.plan.changes.get(column)
                committed = snapshot.column_type(column)
                existing = planned.target if planned else committed
                try:
                    result = self.merger.merge(existing, descriptor, column)
                except TypeConflict as e:
                    conflict = e
                    break
                if result.requires_ddl:
                    tentative[column] = PlannedChange(
                        column=column,
                        outcome=MergeOutcome.WIDENED if committed else MergeOutcome.NEW_COLUMN,
                        target=result.descriptor,
                        previous=committed,
                    )

            if conflict is not None:
                diff.conflicted.append((record, conflict.field_path, conflict))
                continue
            diff.plan.changes.update(tentative)
            diff.accepted.append((record, columns))

        return diff

    def _reject_not_permitted(
        self,
        snapshot: TableSchemaSnapshot,
        diff: _Diff,
        classification: BatchClassification,
    ) -> list[InferredRecord]:
        table = snapshot.table
        accepted = []
        for record, columns in diff.accepted:
            needed = [
                column
                for column, descriptor in columns.items()
                if column in diff.plan.changes
                and self._needs_change(snapshot, column, descriptor)
            ]
            if needed:
                classification.rejected.append(
                    (record, needed[0], EvolutionNotPermitted(table, needed[0]))
                )
            else:
                accepted.append((record, columns))

        rejected = len(diff.accepted) - len(accepted)
        self.logger.info(
            "Schema evolution not permitted, rejecting records",
            table=table,
            columns=diff.plan.column_names,
            rejected=rejected,
        )
        if self.metrics:
            self.metrics.record_rejected(table, "not_permitted", rejected)
        return accepted

    def _needs_change(
        self, snapshot: TableSchemaSnapshot, column: str, descriptor: TypeDescriptor
    ) -> bool:
        try:
            return self.merger.merge(snapshot.column_type(column), descriptor, column).requires_ddl
        except TypeConflict:
            return True

    def _finish(
        self,
        classification: BatchClassification,
        cycle: EvolutionCycle,
        snapshot: TableSchemaSnapshot,
        accepted: list[InferredRecord],
    ) -> BatchClassification:
        self._advance(cycle, EvolutionState.DONE)
        classification.writable = [record for record, _ in accepted]
        classification.state = cycle.state
        classification.snapshot_version = snapshot.version
        if self.metrics:
            self.metrics.record_type_conflicts(classification.table, len(classification.conflicted))
            self.metrics.set_cached_tables(len(self.cache.tables()))
        return classification

    def _advance(self, cycle: EvolutionCycle, state: EvolutionState) -> None:
        # A detached evolution keeps running after its batch has failed
        if not cycle.finished:
            cycle.transition(state)

    def _fail(self, cycle: EvolutionCycle) -> None:
        if not cycle.finished:
            cycle.transition(EvolutionState.FAILED)

    def _report_detached(self, table: str):
        def report(task: "asyncio.Future[_EvolveResult]") -> None:
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                self.logger.error(
                    "Detached schema evolution failed", table=table, error=str(error)
                )
            else:
                self.logger.info("Detached schema evolution completed", table=table)

        return report

    def _record_applied(self, table: str, plan: EvolutionPlan) -> None:
        if not self.metrics:
            return
        for change in plan.changes.values():
            self.metrics.record_schema_change(table, change.outcome.value)

    def _record_ddl(self, table: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_ddl_attempt(table, outcome)

    def _observe(self, table: str, cycle: EvolutionCycle, started: float) -> None:
        if self.metrics:
            self.metrics.record_batch_duration(table, cycle.state.value, time.monotonic() - started)


def _history(cycle: EvolutionCycle) -> list[str]:
    return [state.value for state in cycle.history]


__all__ = ["EvolutionCoordinator"]
