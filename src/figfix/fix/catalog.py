"""Fix catalog: one handler per (category, fix type).

Handlers are pure. ``plan`` reads the node snapshot it is given and proposes
an ``after`` state; nothing here touches the design file.

The catalog is built once at import time, returned by :func:`get_catalog`,
and exposes a read-only mapping, so lookups need no locking.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Mapping

from figfix.core.errors import UnsupportedFixError
from figfix.core.models import (
    FIX_TYPE_CATEGORY,
    FixCategory,
    FixOperation,
    FixType,
    NodeState,
    Violation,
)

DEFAULT_ESTIMATED_SECONDS = 2.0
DEFAULT_GAP = 16

# Detection rule id -> fix type, for violations imported without one.
RULE_FIX_MAP: Mapping[str, FixType] = MappingProxyType({
    "AUTO_LAYOUT_REQUIRED": FixType.ADD_AUTO_LAYOUT,
    "ABSOLUTE_POSITIONING": FixType.ADD_AUTO_LAYOUT,
    "FIXED_SIZE_DETECTED": FixType.CHANGE_TO_FILL,
    "WRAP_DISABLED": FixType.ENABLE_WRAP,
    "NON_SEMANTIC_NAME": FixType.RENAME_SEMANTIC,
})

_SEMANTIC_NAMES = (
    (re.compile(r"^Frame \d+$"), "Section"),
    (re.compile(r"^Rectangle \d+$"), "Container"),
    (re.compile(r"^Group \d+$"), "Content"),
)

_AUTO_LAYOUT_MODES = ("HORIZONTAL", "VERTICAL")


def suggest_semantic_name(name: str) -> str | None:
    """Return a semantic replacement for a default layer name, if any."""
    for pattern, replacement in _SEMANTIC_NAMES:
        if pattern.match(name):
            return replacement
    return None


def _node_name(violation: Violation, node: NodeState) -> str:
    return node.get("name") or violation.node_name or violation.node_id


class FixHandler(ABC):
    """Base class for all fix handlers."""

    category: FixCategory
    fix_type: FixType

    @abstractmethod
    def applies(self, violation: Violation) -> bool:
        """Whether this fix can resolve the violation's recorded node state."""
        ...

    @abstractmethod
    def propose(self, violation: Violation, node: NodeState) -> NodeState:
        """Return the properties this fix sets on the node."""
        ...

    def describe(self, name: str, after: NodeState) -> str:
        return f'Fix "{name}"'

    def plan(self, violation: Violation, node: NodeState) -> FixOperation:
        after = self.propose(violation, node)
        before = {key: node.get(key) for key in after}
        name = _node_name(violation, node)
        return FixOperation(
            violation_id=violation.id,
            category=self.category,
            fix_type=self.fix_type,
            node_id=violation.node_id,
            node_name=name,
            before=before,
            after=after,
            estimated_duration=DEFAULT_ESTIMATED_SECONDS,
            description=self.describe(name, after),
        )


# ---------------------------------------------------------------------------
# AUTO_LAYOUT
# ---------------------------------------------------------------------------

class AddAutoLayout(FixHandler):
    category = FixCategory.AUTO_LAYOUT
    fix_type = FixType.ADD_AUTO_LAYOUT

    def applies(self, violation: Violation) -> bool:
        return violation.snapshot.get("layoutMode", "NONE") == "NONE"

    def propose(self, violation: Violation, node: NodeState) -> NodeState:
        return {
            "layoutMode": "HORIZONTAL",
            "primaryAxisSizingMode": "AUTO",
            "counterAxisSizingMode": "AUTO",
            "itemSpacing": DEFAULT_GAP,
        }

    def describe(self, name: str, after: NodeState) -> str:
        return f'Add auto layout to "{name}" ({after["layoutMode"]})'


class ChangeDirection(FixHandler):
    category = FixCategory.AUTO_LAYOUT
    fix_type = FixType.CHANGE_DIRECTION

    def applies(self, violation: Violation) -> bool:
        return violation.snapshot.get("layoutMode") in _AUTO_LAYOUT_MODES

    def propose(self, violation: Violation, node: NodeState) -> NodeState:
        current = node.get("layoutMode")
        return {"layoutMode": "VERTICAL" if current == "HORIZONTAL" else "HORIZONTAL"}

    def describe(self, name: str, after: NodeState) -> str:
        return f'Change "{name}" direction to {after["layoutMode"]}'


class SetGap(FixHandler):
    category = FixCategory.AUTO_LAYOUT
    fix_type = FixType.SET_GAP

    @staticmethod
    def _gap(violation: Violation) -> int:
        return int(violation.details.get("suggestedGap", DEFAULT_GAP))

    def applies(self, violation: Violation) -> bool:
        snap = violation.snapshot
        return (
            snap.get("layoutMode") in _AUTO_LAYOUT_MODES
            and snap.get("itemSpacing") != self._gap(violation)
        )

    def propose(self, violation: Violation, node: NodeState) -> NodeState:
        return {"itemSpacing": self._gap(violation)}

    def describe(self, name: str, after: NodeState) -> str:
        return f'Set "{name}" gap to {after["itemSpacing"]}'


class EnableWrap(FixHandler):
    category = FixCategory.AUTO_LAYOUT
    fix_type = FixType.ENABLE_WRAP

    def applies(self, violation: Violation) -> bool:
        return violation.snapshot.get("layoutWrap", "NO_WRAP") != "WRAP"

    def propose(self, violation: Violation, node: NodeState) -> NodeState:
        return {"layoutWrap": "WRAP"}

    def describe(self, name: str, after: NodeState) -> str:
        return f'Enable wrap on "{name}"'


# ---------------------------------------------------------------------------
# SIZE_CONSTRAINT
# ---------------------------------------------------------------------------

class _SizingHandler(FixHandler):
    category = FixCategory.SIZE_CONSTRAINT
    target: str = ""

    def applies(self, violation: Violation) -> bool:
        return violation.snapshot.get("layoutSizing", "FIXED") != self.target

    def propose(self, violation: Violation, node: NodeState) -> NodeState:
        return {"layoutSizing": self.target}

    def describe(self, name: str, after: NodeState) -> str:
        return f'Change "{name}" sizing to {self.target}'


class ChangeToFill(_SizingHandler):
    fix_type = FixType.CHANGE_TO_FILL
    target = "FILL"


class ChangeToHug(_SizingHandler):
    fix_type = FixType.CHANGE_TO_HUG
    target = "HUG"


class RemoveFixedSize(_SizingHandler):
    fix_type = FixType.REMOVE_FIXED_SIZE
    target = "HUG"

    def applies(self, violation: Violation) -> bool:
        return violation.snapshot.get("layoutSizing", "FIXED") == "FIXED"

    def describe(self, name: str, after: NodeState) -> str:
        return f'Remove fixed size from "{name}"'


# ---------------------------------------------------------------------------
# NAMING
# ---------------------------------------------------------------------------

class RenameSemantic(FixHandler):
    category = FixCategory.NAMING
    fix_type = FixType.RENAME_SEMANTIC

    def applies(self, violation: Violation) -> bool:
        name = violation.snapshot.get("name") or violation.node_name
        return suggest_semantic_name(name) is not None

    def propose(self, violation: Violation, node: NodeState) -> NodeState:
        name = _node_name(violation, node)
        return {"name": suggest_semantic_name(name) or name}

    def describe(self, name: str, after: NodeState) -> str:
        return f'Rename "{name}" to "{after["name"]}"'


# ---------------------------------------------------------------------------
# COMPONENT
# ---------------------------------------------------------------------------

class CreateComponent(FixHandler):
    category = FixCategory.COMPONENT
    fix_type = FixType.CREATE_COMPONENT

    def applies(self, violation: Violation) -> bool:
        return violation.snapshot.get("type", "FRAME") not in ("COMPONENT", "INSTANCE")

    def propose(self, violation: Violation, node: NodeState) -> NodeState:
        return {"type": "COMPONENT"}

    def describe(self, name: str, after: NodeState) -> str:
        return f'Convert "{name}" into a component'


class DetachInstance(FixHandler):
    category = FixCategory.COMPONENT
    fix_type = FixType.DETACH_INSTANCE

    def applies(self, violation: Violation) -> bool:
        return violation.snapshot.get("type") == "INSTANCE"

    def propose(self, violation: Violation, node: NodeState) -> NodeState:
        return {"type": "FRAME", "componentId": None}

    def describe(self, name: str, after: NodeState) -> str:
        return f'Detach instance "{name}"'


# ---------------------------------------------------------------------------
# STYLE
# ---------------------------------------------------------------------------

class _UnifyStyle(FixHandler):
    category = FixCategory.STYLE
    style_key: str = ""
    label: str = ""

    def applies(self, violation: Violation) -> bool:
        style_id = violation.details.get("styleId")
        return bool(style_id) and violation.snapshot.get(self.style_key) != style_id

    def propose(self, violation: Violation, node: NodeState) -> NodeState:
        return {self.style_key: violation.details["styleId"]}

    def describe(self, name: str, after: NodeState) -> str:
        return f'Apply shared {self.label} style to "{name}"'


class UnifyColors(_UnifyStyle):
    fix_type = FixType.UNIFY_COLORS
    style_key = "fillStyleId"
    label = "color"


class UnifyTypography(_UnifyStyle):
    fix_type = FixType.UNIFY_TYPOGRAPHY
    style_key = "textStyleId"
    label = "text"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

CatalogKey = tuple[FixCategory, FixType]


class FixCatalog:
    """Read-only registry of fix handlers keyed by (category, fix type)."""

    def __init__(self, handlers: list[FixHandler]) -> None:
        registry: dict[CatalogKey, FixHandler] = {}
        for handler in handlers:
            expected = FIX_TYPE_CATEGORY[handler.fix_type]
            if handler.category is not expected:
                raise ValueError(
                    f"{type(handler).__name__} registers {handler.fix_type.value} "
                    f"under {handler.category.value}, expected {expected.value}"
                )
            key = (handler.category, handler.fix_type)
            if key in registry:
                raise ValueError(f"Duplicate handler for {handler.fix_type.value}")
            registry[key] = handler
        self._handlers: Mapping[CatalogKey, FixHandler] = MappingProxyType(registry)

    @property
    def handlers(self) -> Mapping[CatalogKey, FixHandler]:
        return self._handlers

    def __contains__(self, key: object) -> bool:
        return key in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def lookup(self, category: FixCategory, fix_type: FixType) -> FixHandler:
        handler = self._handlers.get((category, fix_type))
        if handler is None:
            raise UnsupportedFixError(
                f"No fix handler registered for {category.value}/{fix_type.value}"
            )
        return handler

    def key_for(self, violation: Violation) -> CatalogKey:
        """Work out the catalog key for a violation, falling back to its rule id."""
        fix_type = violation.fix_type or RULE_FIX_MAP.get(violation.rule_id)
        if fix_type is None:
            raise UnsupportedFixError(
                f"Violation {violation.id} has no fix type (rule {violation.rule_id or '?'})",
                ids=[violation.id],
            )
        return (violation.category or fix_type.category, fix_type)

    def resolve(self, violation: Violation) -> FixHandler:
        """Return the handler that can fix ``violation``.

        Raises :class:`UnsupportedFixError` if none is registered or the
        registered handler does not apply to the recorded node state.
        """
        category, fix_type = self.key_for(violation)
        try:
            handler = self.lookup(category, fix_type)
        except UnsupportedFixError as exc:
            raise UnsupportedFixError(str(exc), ids=[violation.id]) from exc
        if not handler.applies(violation):
            raise UnsupportedFixError(
                f"{fix_type.value} does not apply to violation {violation.id}",
                ids=[violation.id],
            )
        return handler


def default_handlers() -> list[FixHandler]:
    return [
        AddAutoLayout(),
        ChangeDirection(),
        SetGap(),
        EnableWrap(),
        ChangeToFill(),
        ChangeToHug(),
        RemoveFixedSize(),
        RenameSemantic(),
        CreateComponent(),
        DetachInstance(),
        UnifyColors(),
        UnifyTypography(),
    ]


_catalog = FixCatalog(default_handlers())


def get_catalog() -> FixCatalog:
    """Return the process-wide catalog."""
    return _catalog
