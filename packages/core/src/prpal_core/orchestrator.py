"""Run one review end-to-end: prompt, external tool, extraction, annotations.

The orchestrator owns no review state. It reports progress through the
``on_stage`` callback in ReviewOptions and raises for every non-success
outcome; the engine facade turns those into terminal ReviewStates.

Cancellation is cooperative. Each run gets a CancellationToken that is
checked between phases; ``cancel`` sets the token and also aborts the child
process so that a run blocked inside ``execute`` returns promptly.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from prpal_core.detector import resolve_tool_path
from prpal_core.diff import get_patch_line_content, validate_line
from prpal_core.errors import ReviewCancelled
from prpal_core.executor import DEFAULT_TIMEOUT, ProcessExecutor
from prpal_core.extractor import extract_review
from prpal_core.models import ChangedFile, InlineAnnotation, ReviewableItem, ReviewAgent, ReviewIssue, ReviewResult
from prpal_core.prompts import build_review_prompt
from prpal_core.skills import SkillLibrary

logger = logging.getLogger(__name__)

StageCallback = Callable[[str], None]

FILE_NOT_IN_PR = "File not in this PR"
NO_PATCH = "Binary file, no diff available"


class CancellationToken:
    def __init__(self, item_id: str):
        self.item_id = item_id
        self.run_id = uuid.uuid4().hex
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ReviewCancelled(self.item_id)


@dataclass
class ReviewOptions:
    """Inputs of a single run. ``diff`` and ``files`` come from the caller."""

    diff: str
    files: list[ChangedFile]
    agent: Optional[ReviewAgent] = None
    model: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    tool_path: Optional[str] = None
    on_stage: Optional[StageCallback] = None


def build_inline_annotations(issues: Iterable[ReviewIssue], files: Iterable[ChangedFile]) -> list[InlineAnnotation]:
    """Map each issue that names a file and a line onto that file's patch.

    Issues without a file or a line cannot be anchored and are skipped; they
    stay in the review body. ``selected`` starts out equal to ``is_valid``.
    """
    patches = {f.filename: f.patch for f in files}
    annotations = []

    for index, issue in enumerate(issues):
        if not issue.file or issue.line is None:
            continue

        if issue.file not in patches:
            is_valid, actual, warning = False, issue.line, FILE_NOT_IN_PR
        elif not patches[issue.file]:
            is_valid, actual, warning = False, issue.line, NO_PATCH
        else:
            check = validate_line(issue.line, patches[issue.file])
            is_valid, actual, warning = check.is_valid, check.actual_line, check.warning
        code = get_patch_line_content(patches[issue.file], actual) if is_valid else ""

        if warning:
            logger.debug("%s:%s: %s", issue.file, issue.line, warning)
        annotations.append(
            InlineAnnotation(
                issue=issue,
                file=issue.file,
                requested_line=issue.line,
                actual_line=actual,
                is_valid=is_valid,
                issue_index=index,
                selected=is_valid,
                warning=warning,
                code=code,
            )
        )

    return annotations


class Orchestrator:
    def __init__(
        self,
        executor: Optional[ProcessExecutor] = None,
        library: Optional[SkillLibrary] = None,
        detector: Callable[[Optional[str]], str] = resolve_tool_path,
    ):
        self.executor = executor or ProcessExecutor()
        self.library = library
        self.detector = detector
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def track(self, item_id: str, token: Optional[CancellationToken] = None) -> CancellationToken:
        """Register ``token``, or a fresh one, as the cancellation handle for ``item_id``.

        Callers that do work before ``run`` (fetching the diff) track first so
        that a cancel during that work is not lost.
        """
        token = token or CancellationToken(item_id)
        with self._lock:
            self._tokens[item_id] = token
        return token

    def release(self, token: CancellationToken) -> None:
        with self._lock:
            if self._tokens.get(token.item_id) is token:
                del self._tokens[token.item_id]

    def is_active(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._tokens

    def token_for(self, item_id: str) -> Optional[CancellationToken]:
        with self._lock:
            return self._tokens.get(item_id)

    def cancel(self, item_id: str) -> bool:
        """Signal the in-flight review for ``item_id``. False when there is none."""
        with self._lock:
            token = self._tokens.get(item_id)
        if token is None or token.cancelled:
            return False
        token.cancel()
        self.executor.abort(item_id)
        logger.info("Cancelled review for %s", item_id)
        return True

    def run(
        self,
        item: ReviewableItem,
        options: ReviewOptions,
        token: Optional[CancellationToken] = None,
    ) -> ReviewResult:
        """Review ``item`` and return the assembled result.

        Raises ReviewCancelled when the token fires between phases or the child
        process was aborted, and ProcessError for tool failures. Unparseable
        output never raises; it degrades to a fallback review.
        """
        owned = token is None
        if owned:
            token = self.track(item.id)

        def stage(name: str) -> None:
            token.raise_if_cancelled()
            if options.on_stage is not None:
                options.on_stage(name)

        start = time.monotonic()
        try:
            token.raise_if_cancelled()
            tool_path = self.detector(options.tool_path)

            token.raise_if_cancelled()
            agent = options.agent
            prompt = build_review_prompt(item, options.diff, agent, self.library)
            model = options.model or (agent.model if agent else None)

            stage("generating")
            execution = self.executor.execute(
                prompt,
                model=model,
                timeout=options.timeout,
                item_id=item.id,
                tool_path=tool_path,
            )

            stage("parsing")
            review = extract_review(execution.stdout)

            token.raise_if_cancelled()
            annotations = build_inline_annotations(review.issues, options.files)
        finally:
            if owned:
                self.release(token)

        duration = time.monotonic() - start
        logger.info(
            "Review of %s finished in %.1fs: %s, %d issue(s), %d annotation(s)",
            item.id,
            duration,
            review.verdict,
            len(review.issues),
            len(annotations),
        )
        return ReviewResult(
            item_id=item.id,
            item_number=item.number,
            agent_id=agent.id if agent else "default",
            review=review,
            raw_response=execution.stdout,
            duration_seconds=duration,
            annotations=tuple(annotations),
            model=model,
        )
