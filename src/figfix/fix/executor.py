"""Execution engine: applies planned fixes and records the batch in history.

Each item is isolated. A rejected, vanished or stale node fails only its
own item; a systemic oracle failure fails every item not yet attempted.
Results always come back in input order, whatever ``max_workers`` is.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from figfix.core.errors import (
    FigFixError,
    MutationError,
    ScoreOracleError,
    StaleStateError,
    UnsupportedFixError,
)
from figfix.core.models import (
    BatchKind,
    ExecuteResult,
    FixOptions,
    FixStatus,
    HistoryRecord,
    ItemResult,
    StoredDiff,
    Violation,
    new_id,
)
from figfix.core.oracles import MutationOracle, ScoreOracle, ViolationSource
from figfix.fix.cancel import CancelToken, is_cancelled
from figfix.fix.locks import LockManager
from figfix.fix.preview import PlannedFix, PreviewPlanner, validate_request
from figfix.history.store import HistoryStore

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "INTERNAL_ERROR"


def batch_status(items: Sequence[ItemResult]) -> FixStatus:
    """COMPLETED when at least one item succeeded, FAILED otherwise."""
    if any(item.succeeded for item in items):
        return FixStatus.COMPLETED
    return FixStatus.FAILED


def check_fresh(planned: PlannedFix, live: dict) -> None:
    """Raise :class:`StaleStateError` if the live node moved off the planned ``before``."""
    op = planned.operation
    diverged = sorted(key for key, value in op.before.items() if live.get(key) != value)
    if diverged:
        raise StaleStateError(
            f"Node {op.node_id} changed since preview ({', '.join(diverged)})"
        )


def _failed(planned: PlannedFix, exc: BaseException, code: str) -> ItemResult:
    op = planned.operation
    return ItemResult(
        violation_id=op.violation_id,
        category=op.category,
        fix_type=op.fix_type,
        node_id=op.node_id,
        status=FixStatus.FAILED,
        before=dict(op.before),
        after=dict(op.after),
        error=str(exc),
        error_code=code,
    )


def _unsupported(violation: Violation, exc: UnsupportedFixError) -> ItemResult:
    return ItemResult(
        violation_id=violation.id,
        category=violation.category,
        fix_type=violation.fix_type,
        node_id=violation.node_id,
        status=FixStatus.FAILED,
        error=str(exc),
        error_code=exc.code,
    )


@dataclass
class _BatchRun:
    """Mutable state shared by the workers of one batch."""

    cancel_token: CancelToken | None
    systemic: MutationError | None = None
    applied: list[int] = field(default_factory=list)
    canceled: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


class ExecutionEngine:
    """Applies a batch of fixes through the mutation oracle."""

    def __init__(
        self,
        planner: PreviewPlanner,
        mutations: MutationOracle,
        store: HistoryStore,
        locks: LockManager | None = None,
        max_workers: int = 1,
    ) -> None:
        self.planner = planner
        self.mutations = mutations
        self.store = store
        self.locks = locks or LockManager()
        self.max_workers = max(1, max_workers)

    @property
    def violations(self) -> ViolationSource:
        return self.planner.violations

    @property
    def scores(self) -> ScoreOracle:
        return self.planner.scores

    def execute(
        self,
        project_id: str,
        violation_ids: Sequence[str],
        options: FixOptions | None = None,
    ) -> ExecuteResult:
        options = options or FixOptions()
        ids = validate_request(violation_ids, options)
        node_ids = {v.node_id for v in self.planner.resolve(project_id, ids)}
        history_id = new_id()

        with self.locks.hold(project_id, node_ids, owner=history_id):
            return self._execute_locked(history_id, project_id, ids, options)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _execute_locked(
        self,
        history_id: str,
        project_id: str,
        ids: list[str],
        options: FixOptions,
    ) -> ExecuteResult:
        # Re-resolve under the lock; a concurrent batch may have fixed some.
        violations = self.planner.resolve(project_id, ids)
        slots: list[PlannedFix | ItemResult] = []
        for violation in violations:
            try:
                slots.append(PlannedFix(violation, self.planner.plan_one(violation)))
            except UnsupportedFixError as exc:
                logger.warning("Violation %s cannot be fixed: %s", violation.id, exc)
                slots.append(_unsupported(violation, exc))

        open_violations = [v for v in self.violations.list_violations(project_id) if not v.fixed]
        before_score = self.scores.score(project_id, open_violations, frozenset())

        record = HistoryRecord(
            id=history_id,
            project_id=project_id,
            actor_id=options.actor_id,
            kind=BatchKind.INDIVIDUAL if len(ids) == 1 else BatchKind.BULK,
            violation_ids=list(ids),
            before_score=before_score,
            delete_comments=options.delete_comments,
        )
        self.store.begin(record)
        logger.info(
            "Executing batch %s for project %s (%d item(s))", history_id, project_id, len(slots)
        )

        try:
            run = _BatchRun(cancel_token=options.cancel_token)
            results = self._apply_all(slots, run)
            items = [r for r in results if r is not None]

            succeeded = [item for item in items if item.succeeded]
            fixed_ids = [item.violation_id for item in succeeded]
            score_error: str | None = None
            if not succeeded:
                after_score: float | None = before_score
            else:
                try:
                    after_score = self.scores.score(project_id, open_violations, frozenset(fixed_ids))
                except ScoreOracleError as exc:
                    logger.error("Score oracle failed after batch %s: %s", history_id, exc)
                    after_score = None
                    score_error = str(exc)

            record.items = items
            record.fixed_violations = fixed_ids
            record.diffs = [
                StoredDiff(
                    item_id=results[i].id,
                    violation_id=results[i].violation_id,
                    node_id=results[i].node_id,
                    before=dict(results[i].before),
                    after=dict(results[i].after),
                )
                for i in run.applied
            ]
            record.after_score = after_score
            record.status = batch_status(items)
            self.store.complete(record)
        except Exception:
            logger.exception("Batch %s aborted by an internal error", history_id)
            self.store.mark_failed(history_id)
            raise

        if fixed_ids:
            self.violations.set_fixed(project_id, fixed_ids, True)

        result = ExecuteResult(
            history_id=history_id,
            status=record.status,
            items=items,
            before_score=before_score,
            after_score=after_score,
            score_error=score_error,
            canceled=run.canceled,
        )
        logger.info(
            "Batch %s finished %s: %d succeeded, %d failed, score %s -> %s%s",
            history_id,
            result.status.value,
            result.success_count,
            result.failed_count,
            before_score,
            after_score if after_score is not None else "unknown",
            " (canceled)" if run.canceled else "",
        )
        return result

    def _apply_all(
        self,
        slots: list[PlannedFix | ItemResult],
        run: _BatchRun,
    ) -> list[ItemResult | None]:
        """Attempt every slot, returning results indexed by input position.

        ``None`` marks items skipped because the batch was canceled.
        """
        results: list[ItemResult | None] = [None] * len(slots)

        # Items on the same node run in input order on one worker.
        planned: dict[int, PlannedFix] = {}
        groups: dict[str, list[int]] = {}
        for index, slot in enumerate(slots):
            if isinstance(slot, ItemResult):
                results[index] = slot
                continue
            planned[index] = slot
            groups.setdefault(slot.operation.node_id, []).append(index)

        def run_group(indices: list[int]) -> None:
            for index in indices:
                results[index] = self._apply_one(index, planned[index], run)

        if self.max_workers == 1 or len(groups) <= 1:
            for indices in groups.values():
                run_group(indices)
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                list(pool.map(run_group, groups.values()))
        return results

    def _apply_one(self, index: int, planned: PlannedFix, run: _BatchRun) -> ItemResult | None:
        with run.lock:
            systemic = run.systemic
            if is_cancelled(run.cancel_token):
                run.canceled = True
                return None
        if systemic is not None:
            return _failed(planned, systemic, systemic.code)

        op = planned.operation
        try:
            check_fresh(planned, self.mutations.fetch(op.node_id))
            self.mutations.mutate(op.node_id, op.after)
        except MutationError as exc:
            if exc.systemic:
                with run.lock:
                    if run.systemic is None:
                        run.systemic = exc
                logger.error("Mutation oracle unavailable at %s: %s", op.violation_id, exc)
            else:
                logger.warning("Fix %s failed: %s", op.violation_id, exc)
            return _failed(planned, exc, exc.code)
        except FigFixError as exc:
            logger.warning("Fix %s failed: %s", op.violation_id, exc)
            return _failed(planned, exc, exc.code)
        except Exception as exc:
            logger.exception("Fix %s raised unexpectedly", op.violation_id)
            return _failed(planned, exc, INTERNAL_ERROR)

        with run.lock:
            run.applied.append(index)
        return ItemResult(
            violation_id=op.violation_id,
            category=op.category,
            fix_type=op.fix_type,
            node_id=op.node_id,
            status=FixStatus.COMPLETED,
            before=dict(op.before),
            after=dict(op.after),
        )
