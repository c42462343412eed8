"""Contracts for the engine's external collaborators, plus local implementations.

The engine talks to three outside systems:

* a **score oracle** that turns a violation set into a compliance score,
* a **mutation oracle** that reads and patches nodes in the live design file,
* a **violation source** that looks up detected violations per project.

The protocols below are all the engine depends on. The file-backed classes
let the CLI run against a design document and violation list on disk.
"""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Collection, Sequence
from pathlib import Path
from typing import Any, Protocol

from figfix.core.errors import (
    NodeNotFoundError,
    UnavailableError,
    WritePermissionError,
)
from figfix.core.models import NodeState, Severity, Violation


class ScoreOracle(Protocol):
    def score(
        self,
        project_id: str,
        violations: Sequence[Violation],
        fixed: Collection[str],
    ) -> float:
        """Score ``violations`` as if the ids in ``fixed`` were resolved.

        Raises :class:`ScoreOracleError` on failure.
        """
        ...


class MutationOracle(Protocol):
    def fetch(self, node_id: str) -> NodeState:
        """Return the live state of a node."""
        ...

    def mutate(self, node_id: str, patch: NodeState) -> NodeState:
        """Apply ``patch`` to a node and return its resulting state.

        Raises :class:`NodeNotFoundError`, :class:`WritePermissionError`
        or :class:`UnavailableError`.
        """
        ...


class ViolationSource(Protocol):
    def get_violation(self, project_id: str, violation_id: str) -> Violation | None: ...

    def list_violations(self, project_id: str) -> list[Violation]: ...

    def set_fixed(self, project_id: str, violation_ids: Collection[str], fixed: bool) -> None: ...


# ---------------------------------------------------------------------------
# Score oracle
# ---------------------------------------------------------------------------

PENALTIES = {
    Severity.CRITICAL: 10,
    Severity.MAJOR: 5,
    Severity.MINOR: 2,
    Severity.INFO: 0,
}

MAX_SCORE = 100


class PenaltyScoreOracle:
    """Deducts a fixed penalty per unresolved violation, floored at 0."""

    def score(
        self,
        project_id: str,
        violations: Sequence[Violation],
        fixed: Collection[str],
    ) -> float:
        fixed_ids = set(fixed)
        penalty = 0
        for v in violations:
            if v.fixed or v.id in fixed_ids:
                continue
            penalty += PENALTIES.get(v.severity, 0)
        return max(0, MAX_SCORE - penalty)


# ---------------------------------------------------------------------------
# Mutation oracle
# ---------------------------------------------------------------------------

def _write_json_atomic(path: Path, data: Any) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
    os.replace(tmp, path)


class DocumentMutationOracle:
    """Mutates nodes in a JSON design document on disk.

    Document format::

        {"readOnly": false, "nodes": {"1:2": {"name": "Frame 1", ...}}}
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise UnavailableError(f"Design document not reachable: {self.path}") from exc
        except json.JSONDecodeError as exc:
            raise UnavailableError(f"Design document is corrupt: {exc}") from exc

    def fetch(self, node_id: str) -> NodeState:
        with self._lock:
            doc = self._load()
        node = doc.get("nodes", {}).get(node_id)
        if node is None:
            raise NodeNotFoundError(f"Node {node_id} no longer exists")
        return dict(node)

    def mutate(self, node_id: str, patch: NodeState) -> NodeState:
        with self._lock:
            doc = self._load()
            if doc.get("readOnly"):
                raise WritePermissionError(f"No write access to {self.path.name}")
            nodes = doc.setdefault("nodes", {})
            node = nodes.get(node_id)
            if node is None:
                raise NodeNotFoundError(f"Node {node_id} no longer exists")
            for key, value in patch.items():
                if value is None:
                    node.pop(key, None)
                else:
                    node[key] = value
            _write_json_atomic(self.path, doc)
            return dict(node)


# ---------------------------------------------------------------------------
# Violation source
# ---------------------------------------------------------------------------

class JsonViolationSource:
    """Violations stored as ``{"violations": [...]}`` in a JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> list[Violation]:
        if not self.path.exists():
            return []
        data = json.loads(self.path.read_text(encoding="utf-8"))
        return [Violation.from_dict(v) for v in data.get("violations", [])]

    def get_violation(self, project_id: str, violation_id: str) -> Violation | None:
        with self._lock:
            for v in self._load():
                if v.id == violation_id and v.project_id == project_id:
                    return v
        return None

    def list_violations(self, project_id: str) -> list[Violation]:
        with self._lock:
            return [v for v in self._load() if v.project_id == project_id]

    def set_fixed(self, project_id: str, violation_ids: Collection[str], fixed: bool) -> None:
        ids = set(violation_ids)
        with self._lock:
            violations = self._load()
            for v in violations:
                if v.project_id == project_id and v.id in ids:
                    v.fixed = fixed
            _write_json_atomic(self.path, {"violations": [v.to_dict() for v in violations]})


__all__ = [
    "DocumentMutationOracle",
    "JsonViolationSource",
    "MutationOracle",
    "PenaltyScoreOracle",
    "ScoreOracle",
    "ViolationSource",
]
