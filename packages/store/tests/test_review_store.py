"""Tests for ReviewStore transitions."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

from prpal_core.models import InlineAnnotation, ReviewIssue
from prpal_store import STAGE_PROGRESS, ReviewStore

ITEM_ID = "acme/api#1"


def _annotations():
    issue = ReviewIssue("warning", "m", file="a.py", line=3)
    return [
        InlineAnnotation(issue, "a.py", 3, 3, True, 0, selected=True),
        InlineAnnotation(issue, "a.py", 9, 9, False, 1, selected=False, warning="w"),
    ]


class TestInProgress:
    def test_set_in_progress(self):
        state = ReviewStore().set_in_progress(ITEM_ID)
        assert state.status == "in_progress"
        assert state.stage == "starting"
        assert state.progress == 10
        assert state.started_at is not None

    def test_unknown_stage_is_a_no_op(self):
        store = ReviewStore()
        assert store.set_in_progress(ITEM_ID, "thinking") is None
        assert store.get(ITEM_ID) is None

        store.set_in_progress(ITEM_ID)
        assert store.update_stage(ITEM_ID, "thinking") is False
        assert store.get(ITEM_ID).stage == "starting"

    def test_started_at_kept_across_stages(self):
        store = ReviewStore()
        first = store.set_in_progress(ITEM_ID)
        later = store.set_in_progress(ITEM_ID, "analyzing")
        assert later.started_at == first.started_at
        assert later.progress == 50

    def test_update_stage_progress(self):
        store = ReviewStore()
        store.set_in_progress(ITEM_ID)
        for stage, progress in STAGE_PROGRESS.items():
            assert store.update_stage(ITEM_ID, stage) is True
            assert store.get(ITEM_ID).progress == progress

    def test_update_stage_ignored_when_not_in_progress(self):
        store = ReviewStore()
        assert store.update_stage(ITEM_ID, "analyzing") is False
        store.set_pending(ITEM_ID)
        assert store.update_stage(ITEM_ID, "analyzing") is False
        assert store.get(ITEM_ID).status == "pending"


class TestBegin:
    def test_begin_once(self):
        store = ReviewStore()
        assert store.begin(ITEM_ID) is True
        assert store.begin(ITEM_ID) is False

    def test_begin_replaces_terminal_state(self):
        store = ReviewStore()
        store.set_failed(ITEM_ID, "boom")
        assert store.begin(ITEM_ID) is True
        state = store.get(ITEM_ID)
        assert state.status == "in_progress"
        assert state.error is None

    def test_exactly_one_concurrent_begin_wins(self):
        store = ReviewStore()
        barrier = threading.Barrier(16)
        wins = []

        def attempt():
            barrier.wait()
            wins.append(store.begin(ITEM_ID))

        threads = [threading.Thread(target=attempt) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert wins.count(True) == 1


class TestRunOwnership:
    def test_begin_records_run(self):
        store = ReviewStore()
        store.begin(ITEM_ID, run_id="run-a")
        assert store.get(ITEM_ID).run_id == "run-a"
        assert store.owned_by(ITEM_ID, "run-a") is True
        assert store.owned_by(ITEM_ID, "run-b") is False

    def test_superseded_run_cannot_change_state(self):
        store = ReviewStore()
        store.begin(ITEM_ID, run_id="run-a")
        store.set_cancelled(ITEM_ID, run_id="run-a")
        assert store.begin(ITEM_ID, run_id="run-b") is True

        assert store.update_stage(ITEM_ID, "parsing", run_id="run-a") is False
        assert store.set_cancelled(ITEM_ID, run_id="run-a") is False
        assert store.set_failed(ITEM_ID, "late", run_id="run-a") is None
        assert store.set_completed(ITEM_ID, MagicMock(), run_id="run-a") is None
        assert store.set_inline_annotations(ITEM_ID, _annotations(), run_id="run-a") is False

        state = store.get(ITEM_ID)
        assert state.status == "in_progress"
        assert state.stage == "starting"
        assert state.run_id == "run-b"

    def test_owning_run_completes(self):
        store = ReviewStore()
        store.begin(ITEM_ID, run_id="run-a")
        assert store.update_stage(ITEM_ID, "generating", run_id="run-a") is True
        state = store.set_completed(ITEM_ID, MagicMock(), run_id="run-a")
        assert state.status == "completed"
        assert state.run_id == "run-a"
        assert store.set_inline_annotations(ITEM_ID, _annotations(), run_id="run-a") is True

    def test_terminal_state_keeps_run(self):
        store = ReviewStore()
        store.begin(ITEM_ID, run_id="run-a")
        store.set_cancelled(ITEM_ID)
        assert store.owned_by(ITEM_ID, "run-a") is True


class TestTerminal:
    def test_completed(self):
        store = ReviewStore()
        started = store.set_in_progress(ITEM_ID)
        result = MagicMock()
        state = store.set_completed(ITEM_ID, result)

        assert state.status == "completed"
        assert state.progress == 100
        assert state.result is result
        assert state.started_at == started.started_at
        assert state.duration_seconds >= 0
        assert store.get_result(ITEM_ID) is result

    def test_failed_keeps_progress(self):
        store = ReviewStore()
        store.set_in_progress(ITEM_ID, "generating")
        state = store.set_failed(ITEM_ID, "Review timed out")
        assert state.status == "failed"
        assert state.error == "Review timed out"
        assert state.progress == 75

    def test_cancel_only_in_progress(self):
        store = ReviewStore()
        store.set_in_progress(ITEM_ID)
        assert store.set_cancelled(ITEM_ID) is True
        assert store.get(ITEM_ID).status == "cancelled"
        assert store.set_cancelled(ITEM_ID) is False

    def test_cancel_does_not_touch_completed(self):
        store = ReviewStore()
        store.set_in_progress(ITEM_ID)
        store.set_completed(ITEM_ID, MagicMock())
        assert store.set_cancelled(ITEM_ID) is False
        assert store.get(ITEM_ID).status == "completed"

    def test_late_stage_update_after_cancel_ignored(self):
        store = ReviewStore()
        store.set_in_progress(ITEM_ID)
        store.set_cancelled(ITEM_ID)
        assert store.update_stage(ITEM_ID, "parsing") is False
        assert store.get(ITEM_ID).status == "cancelled"

    def test_duration_none_while_running(self):
        store = ReviewStore()
        assert store.set_in_progress(ITEM_ID).duration_seconds is None


class TestAnnotations:
    def test_missing_entry(self):
        store = ReviewStore()
        assert store.set_inline_annotations(ITEM_ID, _annotations()) is False
        assert store.get_inline_annotations(ITEM_ID) == ()

    def test_set_and_toggle(self):
        store = ReviewStore()
        store.set_in_progress(ITEM_ID)
        store.set_completed(ITEM_ID, MagicMock())
        assert store.set_inline_annotations(ITEM_ID, _annotations()) is True

        assert store.set_annotation_selected(ITEM_ID, 1, True) is True
        annotations = store.get_inline_annotations(ITEM_ID)
        assert [a.selected for a in annotations] == [True, True]
        assert annotations[1].is_valid is False

    def test_toggle_out_of_range(self):
        store = ReviewStore()
        store.set_in_progress(ITEM_ID)
        store.set_inline_annotations(ITEM_ID, _annotations())
        assert store.set_annotation_selected(ITEM_ID, 5, True) is False
        assert store.set_annotation_selected(ITEM_ID, -1, True) is False

    def test_toggle_without_annotations(self):
        store = ReviewStore()
        store.set_in_progress(ITEM_ID)
        assert store.set_annotation_selected(ITEM_ID, 0, True) is False


class TestReads:
    def test_partitions(self):
        store = ReviewStore()
        store.set_pending("a#1")
        store.set_in_progress("a#2")
        store.set_in_progress("a#3")
        store.set_completed("a#3", MagicMock())
        store.set_failed("a#4", "x")

        assert {s.item_id for s in store.pending()} == {"a#1", "a#2"}
        assert [s.item_id for s in store.completed()] == ["a#3"]
        assert store.is_in_progress("a#2") is True
        assert store.is_in_progress("a#1") is False
        assert store.has("a#4") is True
        assert len(store.all()) == 4

    def test_clear(self):
        store = ReviewStore()
        store.set_pending("a#1")
        store.set_pending("a#2")
        assert store.clear("a#1") is True
        assert store.clear("a#1") is False
        store.clear_all()
        assert store.all() == []
