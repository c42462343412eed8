"""Tests for the lock manager and cancel tokens."""

from __future__ import annotations

import threading

import pytest

from figfix.core.errors import ConflictError
from figfix.fix.cancel import CancelToken, is_cancelled
from figfix.fix.locks import LockManager


class TestProjectScope:
    def test_second_hold_conflicts(self):
        locks = LockManager()
        with locks.hold("p", ["1:1"], owner="a"):
            assert locks.is_held("p")
            with pytest.raises(ConflictError, match="a"):
                with locks.hold("p", ["2:2"], owner="b"):
                    pass

    def test_other_projects_are_independent(self):
        locks = LockManager()
        with locks.hold("p", [], owner="a"):
            with locks.hold("q", [], owner="b"):
                assert locks.is_held("q")

    def test_released_on_error(self):
        """The lock is freed even when the guarded block raises."""
        locks = LockManager()
        with pytest.raises(RuntimeError):
            with locks.hold("p", [], owner="a"):
                raise RuntimeError("boom")
        assert not locks.is_held("p")


class TestNodeScope:
    def test_disjoint_nodes_run_together(self):
        locks = LockManager("nodes")
        with locks.hold("p", ["1:1", "1:2"], owner="a"):
            with locks.hold("p", ["2:1"], owner="b"):
                assert locks.is_held("p", "2:1")

    def test_overlapping_nodes_conflict(self):
        locks = LockManager("nodes")
        with locks.hold("p", ["1:1", "1:2"], owner="a"):
            with pytest.raises(ConflictError, match="node:p:1:2"):
                with locks.hold("p", ["1:2", "3:3"], owner="b"):
                    pass
            # A failed acquire takes nothing.
            assert not locks.is_held("p", "3:3")

    def test_unknown_scope(self):
        with pytest.raises(ValueError):
            LockManager("global")

    def test_only_one_thread_wins(self):
        locks = LockManager("nodes")
        entered = threading.Event()
        release = threading.Event()
        conflicts = []

        def first():
            with locks.hold("p", ["1:1"], owner="first"):
                entered.set()
                release.wait(5)

        t = threading.Thread(target=first)
        t.start()
        entered.wait(5)
        try:
            with locks.hold("p", ["1:1"], owner="second"):
                pass
        except ConflictError as exc:
            conflicts.append(exc)
        finally:
            release.set()
            t.join(5)

        assert len(conflicts) == 1
        assert not locks.is_held("p", "1:1")


class TestCancelToken:
    def test_starts_uncancelled(self):
        token = CancelToken()
        assert token.cancelled is False
        assert is_cancelled(token) is False

    def test_cancel(self):
        token = CancelToken()
        token.cancel()
        assert token.cancelled is True
        assert is_cancelled(token) is True

    def test_none_is_never_cancelled(self):
        assert is_cancelled(None) is False
