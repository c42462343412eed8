"""Tests for the execution engine."""

from __future__ import annotations

import pytest

from figfix.core.config import FigFixConfig
from figfix.core.errors import (
    ConflictError,
    NodeNotFoundError,
    ScoreOracleError,
    UnavailableError,
    ValidationError,
    WritePermissionError,
)
from figfix.core.models import BatchKind, FixOptions, FixStatus, FixType, ItemResult
from figfix.fix.cancel import CancelToken
from figfix.fix.executor import INTERNAL_ERROR, batch_status

PROJECT = "proj-1"


def _item(status: FixStatus) -> ItemResult:
    return ItemResult(violation_id="v", category=None, fix_type=None, node_id="n", status=status)


class TestBatchStatus:
    def test_any_success_completes(self):
        assert batch_status([_item(FixStatus.FAILED), _item(FixStatus.COMPLETED)]) == FixStatus.COMPLETED

    def test_no_success_fails(self):
        assert batch_status([_item(FixStatus.FAILED)]) == FixStatus.FAILED
        assert batch_status([]) == FixStatus.FAILED


class TestExecute:
    def test_all_items_succeed(self, engine, design, violations):
        result = engine.execute(PROJECT, ["v1", "v2"])

        assert result.status == FixStatus.COMPLETED
        assert result.success_count == 2
        assert result.before_score == 72
        assert result.after_score == 81
        assert result.score_delta == 9
        assert design.nodes["1:1"]["layoutMode"] == "HORIZONTAL"
        assert design.nodes["1:2"]["name"] == "Section"
        assert violations.is_fixed("v1") and violations.is_fixed("v2")

    def test_partial_failure_still_completes(self, engine, design, violations):
        """One rejected item leaves the batch COMPLETED with only v1 fixed."""
        design.errors["1:2"] = WritePermissionError("No write access to design file")
        result = engine.execute(PROJECT, ["v1", "v2"])

        assert result.total_count == 2
        assert result.success_count == 1
        assert result.failed_count == 1
        assert result.status == FixStatus.COMPLETED
        assert result.fixed_violations == ["v1"]
        assert result.items[1].error_code == "PERMISSION_DENIED"
        assert violations.is_fixed("v2") is False

    def test_zero_successes_fail_the_batch(self, engine, design, scores):
        design.errors["1:1"] = NodeNotFoundError("gone")
        design.errors["1:2"] = NodeNotFoundError("gone")
        result = engine.execute(PROJECT, ["v1", "v2"])

        assert result.status == FixStatus.FAILED
        assert result.after_score == result.before_score
        assert result.score_delta == 0
        assert scores.calls == 1

        record = engine.store.get(result.history_id)
        assert record.status == FixStatus.FAILED
        assert record.fixed_violations == []
        assert record.diffs == []
        assert record.score_delta == 0

    def test_counts_always_add_up(self, engine, design, violations, new_violation):
        violations.add(new_violation("v3", "1:3", FixType.ENABLE_WRAP, {"layoutWrap": "NO_WRAP"}))
        design.nodes["1:3"] = {"layoutWrap": "NO_WRAP"}
        design.errors["1:1"] = WritePermissionError("read only")

        result = engine.execute(PROJECT, ["v1", "v2", "v3"])
        assert result.success_count + result.failed_count == result.total_count == 3

    def test_order_preserved_with_parallel_workers(self, make_engine, design, violations, new_violation):
        config = FigFixConfig()
        config.engine.max_workers = 4
        ids = []
        for i in range(8):
            vid = f"w{i}"
            violations.add(new_violation(vid, f"5:{i}", FixType.ENABLE_WRAP, {}))
            design.nodes[f"5:{i}"] = {}
            ids.append(vid)
        ids.reverse()

        result = make_engine(config).execute(PROJECT, ids)

        assert [item.violation_id for item in result.items] == ids
        assert result.success_count == 8

    def test_same_node_items_apply_in_input_order(self, engine, design, violations, new_violation):
        violations.add(new_violation("v3", "1:1", FixType.ENABLE_WRAP, {"layoutMode": "NONE"}))
        engine.execute(PROJECT, ["v3", "v1"])
        assert [node for node, _ in design.mutations] == ["1:1", "1:1"]
        assert design.mutations[0][1] == {"layoutWrap": "WRAP"}

    def test_single_id_is_individual(self, engine):
        actor = "designer-7"
        result = engine.execute(PROJECT, ["v1"], FixOptions(actor_id=actor, delete_comments=True))
        record = engine.store.get(result.history_id)

        assert record.kind == BatchKind.INDIVIDUAL
        assert record.actor_id == actor
        assert record.delete_comments is True

    def test_multiple_ids_are_bulk(self, engine):
        result = engine.execute(PROJECT, ["v1", "v2"])
        assert engine.store.get(result.history_id).kind == BatchKind.BULK


class TestItemIsolation:
    def test_stale_node_fails_only_its_item(self, engine, design):
        """A node edited since preview is reported, not overwritten."""
        design.nodes["1:2"]["name"] = "Hero"
        result = engine.execute(PROJECT, ["v1", "v2"])

        assert result.items[0].succeeded
        assert result.items[1].error_code == "STALE_STATE"
        assert design.nodes["1:2"]["name"] == "Hero"

    def test_vanished_node(self, engine, design):
        del design.nodes["1:1"]
        result = engine.execute(PROJECT, ["v1", "v2"])

        assert result.items[0].error_code == "NOT_FOUND"
        assert result.items[1].succeeded

    def test_unavailable_short_circuits_the_rest(self, engine, design):
        design.errors["1:1"] = UnavailableError("design service unreachable")
        result = engine.execute(PROJECT, ["v1", "v2"])

        assert [item.error_code for item in result.items] == ["UNAVAILABLE", "UNAVAILABLE"]
        assert design.mutations == []
        assert result.status == FixStatus.FAILED

    def test_unsupported_at_execute_is_per_item(self, engine, violations, new_violation):
        violations.add(new_violation("u1", "1:1", FixType.ADD_AUTO_LAYOUT, {"layoutMode": "VERTICAL"}))
        result = engine.execute(PROJECT, ["u1", "v2"])

        assert result.items[0].error_code == "UNSUPPORTED_FIX"
        assert result.items[1].succeeded
        assert result.status == FixStatus.COMPLETED

    def test_unsupported_items_keep_their_slot_with_parallel_workers(self, make_engine, violations, new_violation):
        config = FigFixConfig()
        config.engine.max_workers = 3
        violations.add(new_violation("u1", "3:1", FixType.ADD_AUTO_LAYOUT, {"layoutMode": "VERTICAL"}))
        result = make_engine(config).execute(PROJECT, ["v1", "u1", "v2"])

        assert [item.violation_id for item in result.items] == ["v1", "u1", "v2"]
        assert [item.error_code for item in result.items] == [None, "UNSUPPORTED_FIX", None]

    def test_unexpected_item_error_is_reported(self, engine, design):
        design.errors["1:1"] = RuntimeError("boom")
        result = engine.execute(PROJECT, ["v1", "v2"])

        assert result.items[0].error_code == INTERNAL_ERROR
        assert result.items[0].error == "boom"
        assert result.items[1].succeeded


class TestHistoryRecord:
    def test_diffs_only_for_succeeded_items(self, engine, design):
        design.errors["1:2"] = WritePermissionError("read only")
        result = engine.execute(PROJECT, ["v1", "v2"])
        record = engine.store.get(result.history_id)

        assert record.status == FixStatus.COMPLETED
        assert record.violation_ids == ["v1", "v2"]
        assert record.fixed_violations == ["v1"]
        assert [d.violation_id for d in record.diffs] == ["v1"]
        assert record.diffs[0].item_id == result.items[0].id
        assert record.diffs[0].before["layoutMode"] == "NONE"
        assert record.completed_at is not None
        assert record.rolled_back_at is None

    def test_record_items_match_result(self, engine):
        result = engine.execute(PROJECT, ["v2", "v1"])
        record = engine.store.get(result.history_id)
        assert [i.violation_id for i in record.items] == ["v2", "v1"]
        assert record.after_score == 81


class TestPreconditions:
    def test_unknown_id_fails_whole_call(self, engine, design):
        with pytest.raises(ValidationError):
            engine.execute(PROJECT, ["v1", "missing"])
        assert design.mutations == []
        assert engine.list_history(PROJECT).total == 0

    def test_already_fixed_id(self, engine):
        engine.execute(PROJECT, ["v1"])
        with pytest.raises(ValidationError, match="already fixed"):
            engine.execute(PROJECT, ["v1"])

    def test_lock_conflict(self, engine, design):
        with engine.locks.hold(PROJECT, [], owner="batch-a"):
            with pytest.raises(ConflictError, match="batch-a"):
                engine.execute(PROJECT, ["v1"])
        assert design.mutations == []
        assert engine.list_history(PROJECT).total == 0

    def test_lock_released_after_execute(self, engine):
        engine.execute(PROJECT, ["v1"])
        assert not engine.locks.is_held(PROJECT)

    def test_before_score_failure_creates_nothing(self, engine, scores, design):
        scores.fail_on = {1}
        with pytest.raises(ScoreOracleError):
            engine.execute(PROJECT, ["v1"])
        assert design.mutations == []
        assert engine.list_history(PROJECT).total == 0
        assert not engine.locks.is_held(PROJECT)


class TestScoreFailure:
    def test_after_score_failure_keeps_the_record(self, engine, scores, violations):
        """Applied mutations are never discarded because scoring failed."""
        scores.fail_on = {2}
        result = engine.execute(PROJECT, ["v1", "v2"])

        assert result.status == FixStatus.COMPLETED
        assert result.after_score is None
        assert result.score_delta is None
        assert "timed out" in result.score_error

        record = engine.store.get(result.history_id)
        assert record.status == FixStatus.COMPLETED
        assert record.after_score is None
        assert violations.is_fixed("v1")


class TestInternalFailure:
    def test_marks_record_failed_and_reraises(self, engine, scores, monkeypatch):
        original = scores.score

        def flaky(project_id, violations, fixed):
            if fixed:
                raise RuntimeError("scoring backend crashed")
            return original(project_id, violations, fixed)

        monkeypatch.setattr(scores, "score", flaky)
        with pytest.raises(RuntimeError):
            engine.execute(PROJECT, ["v1"])

        page = engine.list_history(PROJECT)
        assert page.total == 1
        assert page.records[0].status == FixStatus.FAILED
        assert not engine.locks.is_held(PROJECT)


class TestCancellation:
    def test_cancel_between_items(self, engine, design):
        token = CancelToken()
        design.on_mutate = lambda node_id: token.cancel()

        result = engine.execute(PROJECT, ["v1", "v2"], FixOptions(cancel_token=token))

        assert result.canceled is True
        assert [item.violation_id for item in result.items] == ["v1"]
        assert result.total_count == 1
        assert design.nodes["1:2"]["name"] == "Frame 3"
        record = engine.store.get(result.history_id)
        assert record.fixed_violations == ["v1"]
        assert record.status == FixStatus.COMPLETED


class TestConcurrentBatches:
    def test_overlapping_batch_conflicts_while_first_runs(self, engine, design, violations, new_violation):
        violations.add(new_violation("v3", "1:2", FixType.RENAME_SEMANTIC, {"name": "Frame 3"}))
        errors = []

        def second_batch(node_id):
            if errors:
                return
            try:
                engine.execute(PROJECT, ["v3"])
            except ConflictError as exc:
                errors.append(exc)

        design.on_mutate = second_batch
        result = engine.execute(PROJECT, ["v2"])

        assert result.success_count == 1
        assert len(errors) == 1
        assert design.nodes["1:2"]["name"] == "Section"

    def test_overlapping_batch_after_release_is_stale(self, engine, design, violations, new_violation):
        violations.add(new_violation("v3", "1:2", FixType.RENAME_SEMANTIC, {"name": "Frame 3"}))
        engine.execute(PROJECT, ["v2"])

        result = engine.execute(PROJECT, ["v3"])

        assert result.items[0].error_code == "STALE_STATE"
        assert design.mutations == [("1:2", {"name": "Section"})]
