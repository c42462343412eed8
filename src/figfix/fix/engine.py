"""AutoFix engine: the public entry point wiring planner, executor and rollback."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from figfix.core.config import FigFixConfig, load_config
from figfix.core.errors import ValidationError
from figfix.core.models import (
    ExecuteResult,
    FixOptions,
    FixStatus,
    HistoryPage,
    HistoryRecord,
    PreviewResult,
    RollbackReport,
)
from figfix.core.oracles import MutationOracle, ScoreOracle, ViolationSource
from figfix.fix.cancel import CancelToken
from figfix.fix.catalog import FixCatalog
from figfix.fix.executor import ExecutionEngine
from figfix.fix.locks import LockManager
from figfix.fix.preview import PreviewPlanner
from figfix.fix.rollback import RollbackCoordinator
from figfix.history.store import HistoryStore

logger = logging.getLogger(__name__)


class AutoFixEngine:
    """Previews, executes and rolls back fix batches for a workspace."""

    def __init__(
        self,
        violations: ViolationSource,
        scores: ScoreOracle,
        mutations: MutationOracle,
        workspace: Path | None = None,
        config: FigFixConfig | None = None,
        store: HistoryStore | None = None,
        locks: LockManager | None = None,
        catalog: FixCatalog | None = None,
    ):
        self.workspace = (workspace or Path.cwd()).resolve()
        self.config = config or load_config(self.workspace)
        self.store = store or HistoryStore(self.workspace, config=self.config)
        # Execute and rollback must share one lock manager.
        self.locks = locks or LockManager(self.config.engine.lock_scope)

        self.planner = PreviewPlanner(violations, scores, self.config.fix, catalog)
        self.executor = ExecutionEngine(
            self.planner,
            mutations,
            self.store,
            self.locks,
            max_workers=self.config.engine.max_workers,
        )
        self.rollbacks = RollbackCoordinator(self.store, mutations, violations, self.locks)

    def generate_preview(
        self,
        project_id: str,
        violation_ids: Sequence[str],
        options: FixOptions | None = None,
    ) -> PreviewResult:
        """Simulate a batch. Takes no lock and mutates nothing."""
        return self.planner.generate_preview(project_id, violation_ids, options)

    def execute(
        self,
        project_id: str,
        violation_ids: Sequence[str],
        options: FixOptions | None = None,
    ) -> ExecuteResult:
        """Apply a batch and persist its history record."""
        return self.executor.execute(project_id, violation_ids, options)

    def rollback(
        self,
        history_ids: Sequence[str],
        cancel_token: CancelToken | None = None,
    ) -> RollbackReport:
        """Revert previously executed batches, one outcome per id."""
        return self.rollbacks.rollback(history_ids, cancel_token)

    def list_history(
        self,
        project_id: str,
        status: FixStatus | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> HistoryPage:
        """Return a page of a project's history, newest first."""
        history_cfg = self.config.history
        if limit is None:
            limit = history_cfg.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= history_cfg.max_limit:
            raise ValidationError(f"limit must be between 1 and {history_cfg.max_limit}")
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValidationError("offset must be a non-negative integer")
        if isinstance(status, str):
            try:
                status = FixStatus(status.upper())
            except ValueError:
                raise ValidationError(f"Unknown history status {status!r}") from None

        logger.debug(
            "Listing history for %s (status=%s, limit=%d, offset=%d)",
            project_id,
            status.value if status else "any",
            limit,
            offset,
        )
        return self.store.list(project_id, status=status, limit=limit, offset=offset)

    def get_history(self, history_id: str) -> HistoryRecord | None:
        """Return one history record with its items and diffs, or None if unknown."""
        if not isinstance(history_id, str) or not history_id:
            raise ValidationError(f"Malformed history id: {history_id!r}")
        return self.store.get(history_id)
