"""Cooperative cancellation for preview, execute and rollback calls.

Cancellation is only observed between items. A mutation already in flight
always runs to completion.
"""

from __future__ import annotations

import threading


class CancelToken:
    """Thread-safe cancel flag shared between a caller and a running batch."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def is_cancelled(token: CancelToken | None) -> bool:
    return token is not None and token.cancelled
