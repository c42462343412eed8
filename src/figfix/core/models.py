"""Shared data models used across figfix modules."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterator

if TYPE_CHECKING:
    from figfix.fix.cancel import CancelToken

NodeState = dict[str, Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class FixCategory(enum.Enum):
    AUTO_LAYOUT = "AUTO_LAYOUT"
    SIZE_CONSTRAINT = "SIZE_CONSTRAINT"
    NAMING = "NAMING"
    COMPONENT = "COMPONENT"
    STYLE = "STYLE"


class FixType(enum.Enum):
    ADD_AUTO_LAYOUT = "ADD_AUTO_LAYOUT"
    CHANGE_DIRECTION = "CHANGE_DIRECTION"
    SET_GAP = "SET_GAP"
    ENABLE_WRAP = "ENABLE_WRAP"
    CHANGE_TO_FILL = "CHANGE_TO_FILL"
    CHANGE_TO_HUG = "CHANGE_TO_HUG"
    REMOVE_FIXED_SIZE = "REMOVE_FIXED_SIZE"
    RENAME_SEMANTIC = "RENAME_SEMANTIC"
    CREATE_COMPONENT = "CREATE_COMPONENT"
    DETACH_INSTANCE = "DETACH_INSTANCE"
    UNIFY_COLORS = "UNIFY_COLORS"
    UNIFY_TYPOGRAPHY = "UNIFY_TYPOGRAPHY"

    @property
    def category(self) -> FixCategory:
        return FIX_TYPE_CATEGORY[self]


FIX_TYPE_CATEGORY: dict[FixType, FixCategory] = {
    FixType.ADD_AUTO_LAYOUT: FixCategory.AUTO_LAYOUT,
    FixType.CHANGE_DIRECTION: FixCategory.AUTO_LAYOUT,
    FixType.SET_GAP: FixCategory.AUTO_LAYOUT,
    FixType.ENABLE_WRAP: FixCategory.AUTO_LAYOUT,
    FixType.CHANGE_TO_FILL: FixCategory.SIZE_CONSTRAINT,
    FixType.CHANGE_TO_HUG: FixCategory.SIZE_CONSTRAINT,
    FixType.REMOVE_FIXED_SIZE: FixCategory.SIZE_CONSTRAINT,
    FixType.RENAME_SEMANTIC: FixCategory.NAMING,
    FixType.CREATE_COMPONENT: FixCategory.COMPONENT,
    FixType.DETACH_INSTANCE: FixCategory.COMPONENT,
    FixType.UNIFY_COLORS: FixCategory.STYLE,
    FixType.UNIFY_TYPOGRAPHY: FixCategory.STYLE,
}


class FixStatus(enum.Enum):
    """Status of a history record or of a single item result."""

    PENDING = "PENDING"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"


class BatchKind(enum.Enum):
    INDIVIDUAL = "INDIVIDUAL"
    BULK = "BULK"


class Severity(enum.Enum):
    CRITICAL = "CRITICAL"
    MAJOR = "MAJOR"
    MINOR = "MINOR"
    INFO = "INFO"


def _enum_or_none(enum_cls, value):
    if value is None or value == "":
        return None
    return enum_cls(value)


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Violation:
    """A detected rule breach tied to one design node.

    Created by the detection pipeline. The engine only ever flips ``fixed``.
    """

    id: str
    project_id: str
    node_id: str
    category: FixCategory | None = None
    fix_type: FixType | None = None
    node_name: str = ""
    snapshot: NodeState = field(default_factory=dict)
    severity: Severity = Severity.MAJOR
    rule_id: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    fixed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "nodeId": self.node_id,
            "category": self.category.value if self.category else None,
            "fixType": self.fix_type.value if self.fix_type else None,
            "nodeName": self.node_name,
            "snapshot": self.snapshot,
            "severity": self.severity.value,
            "ruleId": self.rule_id,
            "details": self.details,
            "fixed": self.fixed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Violation:
        return cls(
            id=data["id"],
            project_id=data.get("projectId", ""),
            node_id=data.get("nodeId", ""),
            category=_enum_or_none(FixCategory, data.get("category")),
            fix_type=_enum_or_none(FixType, data.get("fixType")),
            node_name=data.get("nodeName", ""),
            snapshot=dict(data.get("snapshot") or {}),
            severity=Severity(data.get("severity", "MAJOR")),
            rule_id=data.get("ruleId", ""),
            details=dict(data.get("details") or {}),
            fixed=bool(data.get("fixed", False)),
        )


@dataclass(frozen=True)
class FixOperation:
    """A planned mutation for one violation."""

    violation_id: str
    category: FixCategory
    fix_type: FixType
    node_id: str
    node_name: str
    before: NodeState
    after: NodeState
    estimated_duration: float
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "violationId": self.violation_id,
            "category": self.category.value,
            "fixType": self.fix_type.value,
            "nodeId": self.node_id,
            "nodeName": self.node_name,
            "before": self.before,
            "after": self.after,
            "estimatedDuration": self.estimated_duration,
            "description": self.description,
        }


@dataclass
class ScoreImpact:
    current: float
    estimated: float

    @property
    def improvement(self) -> float:
        return self.estimated - self.current


@dataclass
class PreviewResult:
    """Read-only simulation of a batch. Never persisted."""

    project_id: str
    items: list[FixOperation]
    estimated_duration: float
    score_impact: ScoreImpact
    canceled: bool = False

    @property
    def total_count(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectId": self.project_id,
            "totalCount": self.total_count,
            "items": [op.to_dict() for op in self.items],
            "estimatedDuration": self.estimated_duration,
            "scoreImpact": {
                "current": self.score_impact.current,
                "estimated": self.score_impact.estimated,
                "improvement": self.score_impact.improvement,
            },
            "canceled": self.canceled,
        }


@dataclass
class ItemResult:
    """Outcome of applying one fix. ``status`` is COMPLETED or FAILED."""

    violation_id: str
    category: FixCategory | None
    fix_type: FixType | None
    node_id: str
    status: FixStatus
    before: NodeState = field(default_factory=dict)
    after: NodeState = field(default_factory=dict)
    error: str | None = None
    error_code: str | None = None
    id: str = field(default_factory=new_id)
    executed_at: datetime = field(default_factory=utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status == FixStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "violationId": self.violation_id,
            "category": self.category.value if self.category else None,
            "fixType": self.fix_type.value if self.fix_type else None,
            "nodeId": self.node_id,
            "status": self.status.value,
            "before": self.before,
            "after": self.after,
            "error": self.error,
            "errorCode": self.error_code,
            "executedAt": self.executed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ItemResult:
        return cls(
            id=data.get("id") or new_id(),
            violation_id=data["violationId"],
            category=_enum_or_none(FixCategory, data.get("category")),
            fix_type=_enum_or_none(FixType, data.get("fixType")),
            node_id=data.get("nodeId", ""),
            status=FixStatus(data["status"]),
            before=dict(data.get("before") or {}),
            after=dict(data.get("after") or {}),
            error=data.get("error"),
            error_code=data.get("errorCode"),
            executed_at=_parse_dt(data.get("executedAt")) or utcnow(),
        )


@dataclass
class ExecuteResult:
    history_id: str
    status: FixStatus
    items: list[ItemResult]
    before_score: float
    after_score: float | None
    score_error: str | None = None
    canceled: bool = False

    @property
    def total_count(self) -> int:
        return len(self.items)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.items if item.succeeded)

    @property
    def failed_count(self) -> int:
        return sum(1 for item in self.items if not item.succeeded)

    @property
    def fixed_violations(self) -> list[str]:
        return [item.violation_id for item in self.items if item.succeeded]

    @property
    def score_delta(self) -> float | None:
        if self.after_score is None:
            return None
        return self.after_score - self.before_score

    def to_dict(self) -> dict[str, Any]:
        return {
            "historyId": self.history_id,
            "status": self.status.value,
            "totalCount": self.total_count,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "fixedViolations": self.fixed_violations,
            "beforeScore": self.before_score,
            "afterScore": self.after_score,
            "scoreDelta": self.score_delta,
            "scoreError": self.score_error,
            "canceled": self.canceled,
            "items": [item.to_dict() for item in self.items],
        }


@dataclass(frozen=True)
class StoredDiff:
    """Reversible record of one succeeded item."""

    item_id: str
    violation_id: str
    node_id: str
    before: NodeState
    after: NodeState

    def to_dict(self) -> dict[str, Any]:
        return {
            "itemId": self.item_id,
            "violationId": self.violation_id,
            "nodeId": self.node_id,
            "before": self.before,
            "after": self.after,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredDiff:
        return cls(
            item_id=data["itemId"],
            violation_id=data["violationId"],
            node_id=data["nodeId"],
            before=dict(data.get("before") or {}),
            after=dict(data.get("after") or {}),
        )


@dataclass
class HistoryRecord:
    """Durable audit entry for one executed batch.

    Only ``status`` and ``rolled_back_at`` change after the batch completes,
    and only through the history store's transitions.
    """

    project_id: str
    violation_ids: list[str]
    before_score: float
    actor_id: str = ""
    kind: BatchKind = BatchKind.BULK
    fixed_violations: list[str] = field(default_factory=list)
    after_score: float | None = None
    status: FixStatus = FixStatus.PENDING
    items: list[ItemResult] = field(default_factory=list)
    diffs: list[StoredDiff] = field(default_factory=list)
    delete_comments: bool = False
    id: str = field(default_factory=new_id)
    executed_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    rolled_back_at: datetime | None = None

    @property
    def score_delta(self) -> float | None:
        if self.after_score is None:
            return None
        return self.after_score - self.before_score

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "actorId": self.actor_id,
            "kind": self.kind.value,
            "violationIds": self.violation_ids,
            "fixedViolations": self.fixed_violations,
            "beforeScore": self.before_score,
            "afterScore": self.after_score,
            "scoreDelta": self.score_delta,
            "status": self.status.value,
            "deleteComments": self.delete_comments,
            "items": [item.to_dict() for item in self.items],
            "diffs": [diff.to_dict() for diff in self.diffs],
            "executedAt": _iso(self.executed_at),
            "completedAt": _iso(self.completed_at),
            "rolledBackAt": _iso(self.rolled_back_at),
        }


@dataclass
class HistoryPage:
    records: list[HistoryRecord]
    total: int
    limit: int
    offset: int


@dataclass
class ItemRevertFailure:
    violation_id: str
    node_id: str
    error: str
    error_code: str


@dataclass
class RollbackOutcome:
    """Result of rolling back one history record."""

    history_id: str
    success: bool
    error: str | None = None
    error_code: str | None = None
    reverted_count: int = 0
    failed_items: list[ItemRevertFailure] = field(default_factory=list)
    canceled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "historyId": self.history_id,
            "success": self.success,
            "error": self.error,
            "errorCode": self.error_code,
            "revertedCount": self.reverted_count,
            "failedItems": [
                {
                    "violationId": f.violation_id,
                    "nodeId": f.node_id,
                    "error": f.error,
                    "errorCode": f.error_code,
                }
                for f in self.failed_items
            ],
            "canceled": self.canceled,
        }


@dataclass
class RollbackReport:
    outcomes: list[RollbackOutcome]
    canceled: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    def __iter__(self) -> Iterator[RollbackOutcome]:
        return iter(self.outcomes)

    def __len__(self) -> int:
        return len(self.outcomes)

    def __getitem__(self, index: int) -> RollbackOutcome:
        return self.outcomes[index]


@dataclass
class FixOptions:
    """Caller options for preview and execute."""

    delete_comments: bool = False
    actor_id: str = ""
    cancel_token: CancelToken | None = None
