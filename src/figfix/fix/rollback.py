"""Rollback coordinator: reverts executed batches from their stored diffs."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from figfix.core.errors import (
    ConflictError,
    CorruptHistoryError,
    FigFixError,
    InvalidStateError,
    MutationError,
    NodeNotFoundError,
    ValidationError,
)
from figfix.core.models import (
    FixStatus,
    HistoryRecord,
    ItemRevertFailure,
    RollbackOutcome,
    RollbackReport,
)
from figfix.core.oracles import MutationOracle, ViolationSource
from figfix.fix.cancel import CancelToken, is_cancelled
from figfix.fix.executor import INTERNAL_ERROR
from figfix.fix.locks import LockManager
from figfix.history.store import HistoryStore

logger = logging.getLogger(__name__)

CANCELED = "CANCELED"


def validate_history_ids(history_ids: Sequence[str]) -> list[str]:
    if isinstance(history_ids, (str, bytes)) or not isinstance(history_ids, Sequence):
        raise ValidationError("history_ids must be a sequence of ids")
    ids = list(history_ids)
    if not ids:
        raise ValidationError("At least one history id is required")
    bad = [repr(i) for i in ids if not isinstance(i, str) or not i]
    if bad:
        raise ValidationError(f"Malformed history ids: {', '.join(bad)}")
    return ids


class RollbackCoordinator:
    """Reverts COMPLETED history records, one independent outcome per id.

    Diffs are reverted last-applied-first by writing each stored ``before``
    snapshot back through the mutation oracle. A record flips to
    ROLLED_BACK only when every one of its diffs reverted.
    """

    def __init__(
        self,
        store: HistoryStore,
        mutations: MutationOracle,
        violations: ViolationSource,
        locks: LockManager | None = None,
    ) -> None:
        self.store = store
        self.mutations = mutations
        self.violations = violations
        self.locks = locks or LockManager()

    def rollback(
        self,
        history_ids: Sequence[str],
        cancel_token: CancelToken | None = None,
    ) -> RollbackReport:
        ids = validate_history_ids(history_ids)
        outcomes: list[RollbackOutcome] = []
        for history_id in ids:
            if is_cancelled(cancel_token):
                logger.info("Rollback canceled after %d of %d record(s)", len(outcomes), len(ids))
                return RollbackReport(outcomes=outcomes, canceled=True)
            outcome = self._rollback_one(history_id, cancel_token)
            outcomes.append(outcome)
            if outcome.canceled:
                return RollbackReport(outcomes=outcomes, canceled=True)

        report = RollbackReport(outcomes=outcomes)
        logger.info(
            "Rollback finished: %d succeeded, %d failed",
            report.success_count,
            report.failed_count,
        )
        return report

    def _rollback_one(self, history_id: str, cancel_token: CancelToken | None) -> RollbackOutcome:
        try:
            record = self.store.get(history_id)
        except CorruptHistoryError as exc:
            logger.error("History %s cannot be read: %s", history_id, exc)
            return RollbackOutcome(
                history_id=history_id, success=False, error=str(exc), error_code=exc.code
            )
        if record is None:
            return RollbackOutcome(
                history_id=history_id,
                success=False,
                error=f"History {history_id} does not exist",
                error_code=NodeNotFoundError.code,
            )
        if record.status != FixStatus.COMPLETED:
            exc = InvalidStateError(
                f"History {history_id} is {record.status.value}; only COMPLETED records can be rolled back"
            )
            return RollbackOutcome(
                history_id=history_id, success=False, error=str(exc), error_code=exc.code
            )

        node_ids = {diff.node_id for diff in record.diffs}
        try:
            with self.locks.hold(record.project_id, node_ids, owner=f"rollback:{history_id}"):
                return self._revert_locked(record, cancel_token)
        except (ConflictError, CorruptHistoryError, InvalidStateError) as exc:
            logger.warning("Rollback of %s failed: %s", history_id, exc)
            return RollbackOutcome(
                history_id=history_id, success=False, error=str(exc), error_code=exc.code
            )

    def _revert_locked(
        self,
        record: HistoryRecord,
        cancel_token: CancelToken | None,
    ) -> RollbackOutcome:
        # Re-read under the lock; another caller may have rolled it back.
        current = self.store.get(record.id)
        if current is None or current.status != FixStatus.COMPLETED:
            state = current.status.value if current else "missing"
            raise InvalidStateError(f"History {record.id} is {state}; expected COMPLETED")

        reverted: list[str] = []
        failures: list[ItemRevertFailure] = []
        systemic: MutationError | None = None
        canceled = False

        for diff in reversed(record.diffs):
            if is_cancelled(cancel_token):
                canceled = True
                break
            if systemic is not None:
                failures.append(
                    ItemRevertFailure(diff.violation_id, diff.node_id, str(systemic), systemic.code)
                )
                continue
            try:
                self.mutations.mutate(diff.node_id, dict(diff.before))
            except MutationError as exc:
                if exc.systemic:
                    systemic = exc
                    logger.error("Mutation oracle unavailable reverting %s: %s", diff.violation_id, exc)
                else:
                    logger.warning("Revert of %s failed: %s", diff.violation_id, exc)
                failures.append(ItemRevertFailure(diff.violation_id, diff.node_id, str(exc), exc.code))
            except FigFixError as exc:
                logger.warning("Revert of %s failed: %s", diff.violation_id, exc)
                failures.append(ItemRevertFailure(diff.violation_id, diff.node_id, str(exc), exc.code))
            except Exception as exc:
                logger.exception("Revert of %s raised unexpectedly", diff.violation_id)
                failures.append(ItemRevertFailure(diff.violation_id, diff.node_id, str(exc), INTERNAL_ERROR))
            else:
                reverted.append(diff.violation_id)

        if reverted:
            self.violations.set_fixed(record.project_id, reverted, False)

        if failures or canceled:
            if canceled:
                error, code = "Rollback canceled before every item was reverted", CANCELED
            else:
                error, code = f"{len(failures)} item(s) could not be reverted", failures[0].error_code
            logger.warning("Rollback of %s incomplete: %s", record.id, error)
            return RollbackOutcome(
                history_id=record.id,
                success=False,
                error=error,
                error_code=code,
                reverted_count=len(reverted),
                failed_items=failures,
                canceled=canceled,
            )

        self.store.mark_rolled_back(record.id)
        logger.info("Rolled back %s (%d item(s))", record.id, len(reverted))
        return RollbackOutcome(
            history_id=record.id,
            success=True,
            reverted_count=len(reverted),
        )
