"""Tests for the single-review orchestrator."""

import json
from unittest.mock import MagicMock

import pytest

from prpal_core.errors import ProcessError, ProcessErrorType, ReviewCancelled
from prpal_core.executor import ExecutionResult
from prpal_core.models import ChangedFile, ReviewableItem, ReviewAgent, ReviewIssue
from prpal_core.orchestrator import (
    FILE_NOT_IN_PR,
    NO_PATCH,
    CancellationToken,
    Orchestrator,
    ReviewOptions,
    build_inline_annotations,
)

PATCH = "@@ -5,2 +5,3 @@\n a = 1\n+b = 2\n c = 3"  # new-file lines 5, 6, 7

FILES = [
    ChangedFile(filename="app.py", patch=PATCH),
    ChangedFile(filename="logo.png", status="added", patch=None),
]

ITEM = ReviewableItem(id="acme/api#3", number=3, title="Fix", repo_owner="acme", repo_name="api")

REVIEW = {
    "summary": "Mostly fine.",
    "verdict": "request_changes",
    "issues": [
        {"severity": "critical", "file": "app.py", "line": 6, "message": "b is unused"},
        {"severity": "info", "message": "General note"},
    ],
}


def _executor(stdout=None, side_effect=None):
    executor = MagicMock()
    if side_effect is not None:
        executor.execute.side_effect = side_effect
    else:
        executor.execute.return_value = ExecutionResult(
            stdout=json.dumps(REVIEW) if stdout is None else stdout, stderr="", exit_code=0
        )
    return executor


def _orchestrator(executor=None):
    return Orchestrator(executor=executor or _executor(), detector=lambda path: path or "/bin/opencode")


# ---------------------------------------------------------------------------
# build_inline_annotations
# ---------------------------------------------------------------------------


class TestBuildInlineAnnotations:
    def test_line_in_diff(self):
        (annotation,) = build_inline_annotations([ReviewIssue("warning", "m", file="app.py", line=6)], FILES)
        assert annotation.is_valid is True
        assert annotation.selected is True
        assert annotation.actual_line == 6
        assert annotation.warning is None
        assert annotation.issue_index == 0
        assert annotation.code == "b = 2"

    def test_line_after_hunk_snaps_back(self):
        (annotation,) = build_inline_annotations([ReviewIssue("warning", "m", file="app.py", line=40)], FILES)
        assert annotation.is_valid is True
        assert annotation.requested_line == 40
        assert annotation.actual_line == 7
        assert annotation.warning == "Line 40 not in diff, using line 7"
        assert annotation.code == "c = 3"

    def test_line_before_first_hunk_is_invalid(self):
        (annotation,) = build_inline_annotations([ReviewIssue("warning", "m", file="app.py", line=2)], FILES)
        assert annotation.is_valid is False
        assert annotation.selected is False
        assert annotation.actual_line == annotation.requested_line == 2
        assert annotation.code == ""

    def test_file_not_in_pr(self):
        (annotation,) = build_inline_annotations([ReviewIssue("info", "m", file="other.py", line=1)], FILES)
        assert annotation.is_valid is False
        assert annotation.warning == FILE_NOT_IN_PR

    def test_file_without_patch(self):
        (annotation,) = build_inline_annotations([ReviewIssue("info", "m", file="logo.png", line=1)], FILES)
        assert annotation.is_valid is False
        assert annotation.warning == NO_PATCH

    def test_issues_without_location_skipped_but_indices_kept(self):
        issues = [
            ReviewIssue("info", "general"),
            ReviewIssue("info", "no line", file="app.py"),
            ReviewIssue("critical", "located", file="app.py", line=5),
        ]
        annotations = build_inline_annotations(issues, FILES)
        assert [a.issue_index for a in annotations] == [2]


# ---------------------------------------------------------------------------
# CancellationToken
# ---------------------------------------------------------------------------


class TestCancellationToken:
    def test_raise_if_cancelled(self):
        token = CancellationToken("o/r#1")
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled is True
        with pytest.raises(ReviewCancelled):
            token.raise_if_cancelled()


# ---------------------------------------------------------------------------
# Orchestrator.run
# ---------------------------------------------------------------------------


class TestRun:
    def test_success_assembles_result(self):
        orchestrator = _orchestrator()
        result = orchestrator.run(ITEM, ReviewOptions(diff="d", files=FILES, model="openai/gpt-4o"))

        assert result.item_id == "acme/api#3"
        assert result.item_number == 3
        assert result.agent_id == "default"
        assert result.model == "openai/gpt-4o"
        assert result.review.verdict == "request_changes"
        assert len(result.review.issues) == 2
        assert len(result.annotations) == 1
        assert result.annotations[0].actual_line == 6
        assert result.raw_response == json.dumps(REVIEW)

    def test_executor_called_with_prompt_and_options(self):
        executor = _executor()
        orchestrator = _orchestrator(executor)
        orchestrator.run(ITEM, ReviewOptions(diff="THE DIFF", files=FILES, timeout=42, tool_path="/opt/oc"))

        args, kwargs = executor.execute.call_args
        assert "THE DIFF" in args[0]
        assert kwargs["timeout"] == 42
        assert kwargs["item_id"] == "acme/api#3"
        assert kwargs["tool_path"] == "/opt/oc"

    def test_agent_model_used_when_none_given(self):
        executor = _executor()
        agent = ReviewAgent(id="sec", name="Sec", prompt="Be strict.", model="anthropic/claude")
        result = _orchestrator(executor).run(ITEM, ReviewOptions(diff="", files=[], agent=agent))
        assert executor.execute.call_args.kwargs["model"] == "anthropic/claude"
        assert result.agent_id == "sec"
        assert executor.execute.call_args.args[0].startswith("Be strict.")

    def test_explicit_model_beats_agent_model(self):
        executor = _executor()
        agent = ReviewAgent(id="sec", name="Sec", prompt="p", model="anthropic/claude")
        _orchestrator(executor).run(ITEM, ReviewOptions(diff="", files=[], agent=agent, model="x/y"))
        assert executor.execute.call_args.kwargs["model"] == "x/y"

    def test_stages_reported_in_order(self):
        stages = []
        _orchestrator().run(ITEM, ReviewOptions(diff="", files=FILES, on_stage=stages.append))
        assert stages == ["generating", "parsing"]

    def test_unparseable_output_degrades_to_fallback(self):
        result = _orchestrator(_executor(stdout="I could not review this")).run(
            ITEM, ReviewOptions(diff="", files=FILES)
        )
        assert result.review.verdict == "comment"
        assert result.annotations == ()

    def test_process_error_propagates(self):
        error = ProcessError(ProcessErrorType.RATE_LIMITED, "Rate limited")
        orchestrator = _orchestrator(_executor(side_effect=error))
        with pytest.raises(ProcessError):
            orchestrator.run(ITEM, ReviewOptions(diff="", files=[]))
        assert orchestrator.is_active(ITEM.id) is False

    def test_missing_tool_raises_before_executing(self):
        executor = _executor()

        def detector(path):
            raise ProcessError(ProcessErrorType.NOT_INSTALLED, "not found")

        orchestrator = Orchestrator(executor=executor, detector=detector)
        with pytest.raises(ProcessError):
            orchestrator.run(ITEM, ReviewOptions(diff="", files=[]))
        executor.execute.assert_not_called()


class TestCancellation:
    def test_cancelled_token_stops_before_execution(self):
        executor = _executor()
        orchestrator = _orchestrator(executor)
        token = orchestrator.track(ITEM.id)
        token.cancel()

        with pytest.raises(ReviewCancelled):
            orchestrator.run(ITEM, ReviewOptions(diff="", files=[]), token)
        executor.execute.assert_not_called()

    def test_cancel_during_stage_callback(self):
        orchestrator = _orchestrator()
        token = orchestrator.track(ITEM.id)

        def on_stage(stage):
            if stage == "generating":
                orchestrator.cancel(ITEM.id)

        with pytest.raises(ReviewCancelled):
            orchestrator.run(ITEM, ReviewOptions(diff="", files=[], on_stage=on_stage), token)

    def test_cancel_aborts_executor(self):
        executor = _executor()
        orchestrator = _orchestrator(executor)
        orchestrator.track(ITEM.id)

        assert orchestrator.cancel(ITEM.id) is True
        executor.abort.assert_called_once_with(ITEM.id)

    def test_cancel_twice_returns_false(self):
        orchestrator = _orchestrator()
        orchestrator.track(ITEM.id)
        assert orchestrator.cancel(ITEM.id) is True
        assert orchestrator.cancel(ITEM.id) is False

    def test_cancel_unknown_returns_false(self):
        assert _orchestrator().cancel("nope#1") is False

    def test_release_only_removes_own_token(self):
        orchestrator = _orchestrator()
        old = orchestrator.track(ITEM.id)
        orchestrator.track(ITEM.id)
        orchestrator.release(old)
        assert orchestrator.is_active(ITEM.id) is True

    def test_caller_token_not_released_by_run(self):
        orchestrator = _orchestrator()
        token = orchestrator.track(ITEM.id)
        orchestrator.run(ITEM, ReviewOptions(diff="", files=[]), token)
        assert orchestrator.is_active(ITEM.id) is True
        orchestrator.release(token)
        assert orchestrator.is_active(ITEM.id) is False
