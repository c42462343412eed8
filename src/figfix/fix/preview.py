"""Preview planner: read-only simulation of a fix batch."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace

from figfix.core.config import FixConfig
from figfix.core.errors import UnsupportedFixError, ValidationError
from figfix.core.models import (
    FixOperation,
    FixOptions,
    PreviewResult,
    ScoreImpact,
    Violation,
)
from figfix.core.oracles import ScoreOracle, ViolationSource
from figfix.fix.cancel import is_cancelled
from figfix.fix.catalog import FixCatalog, get_catalog

logger = logging.getLogger(__name__)


@dataclass
class PlannedFix:
    violation: Violation
    operation: FixOperation


def validate_request(violation_ids: Sequence[str], options: FixOptions) -> list[str]:
    """Check the shape of a preview/execute request and return the ids as a list."""
    if isinstance(violation_ids, (str, bytes)) or not isinstance(violation_ids, Sequence):
        raise ValidationError("violation_ids must be a sequence of ids")
    ids = list(violation_ids)
    if not ids:
        raise ValidationError("At least one violation id is required")
    bad = [repr(i) for i in ids if not isinstance(i, str) or not i]
    if bad:
        raise ValidationError(f"Malformed violation ids: {', '.join(bad)}")
    seen: set[str] = set()
    dupes: list[str] = []
    for vid in ids:
        if vid in seen:
            dupes.append(vid)
        seen.add(vid)
    if dupes:
        raise ValidationError(f"Duplicate violation ids: {', '.join(dupes)}", ids=dupes)
    if not isinstance(options.delete_comments, bool):
        raise ValidationError("delete_comments must be a boolean")
    if not isinstance(options.actor_id, str):
        raise ValidationError("actor_id must be a string")
    return ids


class PreviewPlanner:
    """Resolves violation ids into fix plans without touching the design file."""

    def __init__(
        self,
        violations: ViolationSource,
        scores: ScoreOracle,
        fix_config: FixConfig | None = None,
        catalog: FixCatalog | None = None,
    ) -> None:
        self.violations = violations
        self.scores = scores
        self.fix_config = fix_config or FixConfig()
        self.catalog = catalog or get_catalog()

    def resolve(self, project_id: str, violation_ids: list[str]) -> list[Violation]:
        """Look up every id; all-or-nothing."""
        found: list[Violation] = []
        missing: list[str] = []
        already_fixed: list[str] = []
        for vid in violation_ids:
            violation = self.violations.get_violation(project_id, vid)
            if violation is None or violation.project_id != project_id:
                missing.append(vid)
            elif violation.fixed:
                already_fixed.append(vid)
            else:
                found.append(violation)

        if missing or already_fixed:
            parts = []
            if missing:
                parts.append(f"not found in project {project_id}: {', '.join(missing)}")
            if already_fixed:
                parts.append(f"already fixed: {', '.join(already_fixed)}")
            raise ValidationError("Violations " + "; ".join(parts), ids=missing + already_fixed)
        return found

    def plan_one(self, violation: Violation) -> FixOperation:
        handler = self.catalog.resolve(violation)
        if handler.fix_type.value in self.fix_config.disabled_types:
            raise UnsupportedFixError(
                f"{handler.fix_type.value} is disabled by configuration",
                ids=[violation.id],
            )
        operation = handler.plan(violation, violation.snapshot)
        return replace(
            operation,
            estimated_duration=self.fix_config.estimate_for(handler.fix_type.value),
        )

    def plan(
        self,
        project_id: str,
        violation_ids: Sequence[str],
        options: FixOptions | None = None,
    ) -> tuple[list[PlannedFix], bool]:
        """Resolve and plan a batch in input order.

        Returns the plans and whether planning stopped early on cancellation.
        """
        options = options or FixOptions()
        ids = validate_request(violation_ids, options)
        logger.info("Planning %d violation(s) for project %s", len(ids), project_id)
        violations = self.resolve(project_id, ids)

        planned: list[PlannedFix] = []
        unsupported: list[str] = []
        reasons: list[str] = []
        canceled = False
        for violation in violations:
            if is_cancelled(options.cancel_token):
                canceled = True
                break
            try:
                planned.append(PlannedFix(violation, self.plan_one(violation)))
            except UnsupportedFixError as exc:
                unsupported.append(violation.id)
                reasons.append(str(exc))

        if unsupported:
            raise UnsupportedFixError("; ".join(reasons), ids=unsupported)
        return planned, canceled

    def generate_preview(
        self,
        project_id: str,
        violation_ids: Sequence[str],
        options: FixOptions | None = None,
    ) -> PreviewResult:
        planned, canceled = self.plan(project_id, violation_ids, options)

        open_violations = [v for v in self.violations.list_violations(project_id) if not v.fixed]
        current = self.scores.score(project_id, open_violations, frozenset())
        estimated = self.scores.score(
            project_id, open_violations, frozenset(p.violation.id for p in planned)
        )

        items = [p.operation for p in planned]
        result = PreviewResult(
            project_id=project_id,
            items=items,
            estimated_duration=sum(op.estimated_duration for op in items),
            score_impact=ScoreImpact(current=current, estimated=estimated),
            canceled=canceled,
        )
        logger.info(
            "Preview for project %s: %d item(s), score %s -> %s%s",
            project_id,
            result.total_count,
            current,
            estimated,
            " (canceled)" if canceled else "",
        )
        return result
