"""Exclusive locks over the design resources a batch mutates.

Locks are try-acquire: a batch that overlaps one already in flight fails
immediately with :class:`ConflictError` instead of queueing behind it.
Two scopes are supported:

``project``
    one lock per project; batches in the same project never run together.
``nodes``
    one lock per target node id; batches touching disjoint nodes can run
    concurrently.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from figfix.core.config import LOCK_SCOPES
from figfix.core.errors import ConflictError

logger = logging.getLogger(__name__)


class LockManager:
    """Tracks which resources are held by in-flight batches."""

    def __init__(self, scope: str = "project") -> None:
        if scope not in LOCK_SCOPES:
            raise ValueError(f"Unknown lock scope {scope!r}")
        self.scope = scope
        self._guard = threading.Lock()
        self._held: dict[str, str] = {}

    def keys_for(self, project_id: str, node_ids: Iterable[str]) -> set[str]:
        if self.scope == "project":
            return {f"project:{project_id}"}
        return {f"node:{project_id}:{node_id}" for node_id in node_ids}

    def is_held(self, project_id: str, node_id: str | None = None) -> bool:
        with self._guard:
            if self.scope == "project":
                return f"project:{project_id}" in self._held
            return f"node:{project_id}:{node_id}" in self._held

    @contextmanager
    def hold(
        self,
        project_id: str,
        node_ids: Iterable[str],
        owner: str = "",
    ) -> Iterator[None]:
        """Hold the lock for the batch's resources for the duration of the block.

        Release is unconditional, including when the block raises.
        """
        keys = self.keys_for(project_id, node_ids)
        with self._guard:
            busy = sorted(k for k in keys if k in self._held)
            if busy:
                holders = sorted({self._held[k] for k in busy})
                raise ConflictError(
                    f"Resources {', '.join(busy)} are locked by in-flight batch "
                    f"{', '.join(h for h in holders if h) or '<unknown>'}; retry later"
                )
            for key in keys:
                self._held[key] = owner
        logger.debug("Acquired %d lock(s) for %s", len(keys), owner or project_id)
        try:
            yield
        finally:
            with self._guard:
                for key in keys:
                    self._held.pop(key, None)
            logger.debug("Released %d lock(s) for %s", len(keys), owner or project_id)
