"""Shared in-memory collaborators for engine tests."""

from __future__ import annotations

import copy
from collections.abc import Callable, Collection, Sequence
from dataclasses import replace
from pathlib import Path

import pytest

from figfix.core.config import FigFixConfig
from figfix.core.errors import NodeNotFoundError, ScoreOracleError
from figfix.core.models import FixType, NodeState, Violation
from figfix.fix.engine import AutoFixEngine
from figfix.history.store import HistoryStore

PROJECT = "proj-1"


class FakeViolationSource:
    def __init__(self, violations: Sequence[Violation] = ()):
        self._violations: dict[str, Violation] = {}
        for v in violations:
            self.add(v)

    def add(self, violation: Violation) -> None:
        self._violations[violation.id] = violation

    def get_violation(self, project_id: str, violation_id: str) -> Violation | None:
        v = self._violations.get(violation_id)
        return replace(v) if v is not None else None

    def list_violations(self, project_id: str) -> list[Violation]:
        return [replace(v) for v in self._violations.values() if v.project_id == project_id]

    def set_fixed(self, project_id: str, violation_ids: Collection[str], fixed: bool) -> None:
        for vid in violation_ids:
            self._violations[vid].fixed = fixed

    def is_fixed(self, violation_id: str) -> bool:
        return self._violations[violation_id].fixed


class FakeScoreOracle:
    """Score is ``max_score`` minus the weight of every still-open violation."""

    def __init__(self, max_score: float = 81, weights: dict[str, float] | None = None):
        self.max_score = max_score
        self.weights = weights if weights is not None else {"v1": 9, "v2": 0}
        self.calls = 0
        self.fail_on: set[int] = set()

    def score(self, project_id: str, violations: Sequence[Violation], fixed: Collection[str]) -> float:
        self.calls += 1
        if self.calls in self.fail_on:
            raise ScoreOracleError("score service timed out")
        fixed_ids = set(fixed)
        penalty = sum(
            self.weights.get(v.id, 0)
            for v in violations
            if not v.fixed and v.id not in fixed_ids
        )
        return self.max_score - penalty


class FakeDesign:
    """In-memory design file with injectable per-node failures."""

    def __init__(self, nodes: dict[str, NodeState] | None = None):
        self.nodes: dict[str, NodeState] = nodes or {}
        self.errors: dict[str, Exception] = {}
        self.mutations: list[tuple[str, NodeState]] = []
        self.on_mutate: Callable[[str], None] | None = None

    def fetch(self, node_id: str) -> NodeState:
        if node_id not in self.nodes:
            raise NodeNotFoundError(f"Node {node_id} no longer exists")
        return copy.deepcopy(self.nodes[node_id])

    def mutate(self, node_id: str, patch: NodeState) -> NodeState:
        if node_id in self.errors:
            raise self.errors[node_id]
        if node_id not in self.nodes:
            raise NodeNotFoundError(f"Node {node_id} no longer exists")
        node = self.nodes[node_id]
        for key, value in patch.items():
            if value is None:
                node.pop(key, None)
            else:
                node[key] = value
        self.mutations.append((node_id, dict(patch)))
        if self.on_mutate is not None:
            self.on_mutate(node_id)
        return copy.deepcopy(node)


def make_violation(
    vid: str,
    node_id: str,
    fix_type: FixType,
    snapshot: NodeState,
    project_id: str = PROJECT,
    **kwargs,
) -> Violation:
    return Violation(
        id=vid,
        project_id=project_id,
        node_id=node_id,
        category=fix_type.category,
        fix_type=fix_type,
        node_name=snapshot.get("name", ""),
        snapshot=dict(snapshot),
        **kwargs,
    )


@pytest.fixture
def violations() -> FakeViolationSource:
    """v1: frame without auto layout; v2: default-named frame."""
    return FakeViolationSource([
        make_violation("v1", "1:1", FixType.ADD_AUTO_LAYOUT, {"name": "Card", "layoutMode": "NONE"}),
        make_violation("v2", "1:2", FixType.RENAME_SEMANTIC, {"name": "Frame 3"}),
    ])


@pytest.fixture
def scores() -> FakeScoreOracle:
    return FakeScoreOracle()


@pytest.fixture
def design() -> FakeDesign:
    return FakeDesign({
        "1:1": {"name": "Card", "layoutMode": "NONE"},
        "1:2": {"name": "Frame 3"},
    })


@pytest.fixture
def store(tmp_path: Path) -> HistoryStore:
    return HistoryStore(tmp_path)


@pytest.fixture
def make_engine(tmp_path: Path, violations, scores, design, store):
    def _make(config: FigFixConfig | None = None, **kwargs) -> AutoFixEngine:
        return AutoFixEngine(
            violations=violations,
            scores=scores,
            mutations=design,
            workspace=tmp_path,
            config=config,
            store=store,
            **kwargs,
        )
    return _make


@pytest.fixture
def engine(make_engine) -> AutoFixEngine:
    return make_engine()


@pytest.fixture
def new_violation():
    """Factory for extra violations: ``new_violation(id, node_id, fix_type, snapshot)``."""
    return make_violation
