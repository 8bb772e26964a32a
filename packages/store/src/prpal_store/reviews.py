"""ReviewStore: one ReviewState per reviewable item.

Transitions are total: an operation against a missing entry or an entry in the
wrong status does nothing and reports that through its return value. Progress
callbacks from a review thread routinely arrive after the review was cancelled
or restarted, and those must not resurrect or corrupt the newer state.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable

from prpal_store.models import STAGE_PROGRESS, ReviewState

if TYPE_CHECKING:
    from prpal_core.models import InlineAnnotation, ReviewResult

logger = logging.getLogger(__name__)

_FIRST_STAGE = "starting"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _progress(stage: str) -> int | None:
    progress = STAGE_PROGRESS.get(stage)
    if progress is None:
        logger.debug("Ignoring unknown review stage %r", stage)
    return progress


def _stale(existing: ReviewState | None, run_id: str | None) -> bool:
    """True when ``run_id`` names a run that no longer owns ``existing``."""
    return run_id is not None and (existing is None or existing.run_id != run_id)


class ReviewStore:
    def __init__(self):
        self._states: dict[str, ReviewState] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Transitions                                                          #
    # ------------------------------------------------------------------ #

    def set_pending(self, item_id: str) -> ReviewState:
        state = ReviewState(item_id=item_id, status="pending")
        with self._lock:
            self._states[item_id] = state
        logger.debug("Review %s -> pending", item_id)
        return state

    def set_in_progress(self, item_id: str, stage: str = _FIRST_STAGE) -> ReviewState | None:
        """Mark ``item_id`` in progress; an existing ``started_at`` is kept.

        Returns None, changing nothing, for an unknown stage.
        """
        progress = _progress(stage)
        if progress is None:
            return None
        with self._lock:
            existing = self._states.get(item_id)
            started_at = existing.started_at if existing and existing.started_at else _now()
            state = ReviewState(
                item_id=item_id,
                status="in_progress",
                stage=stage,
                progress=progress,
                started_at=started_at,
                run_id=existing.run_id if existing else None,
            )
            self._states[item_id] = state
        logger.debug("Review %s -> in_progress (%s)", item_id, stage)
        return state

    def begin(self, item_id: str, run_id: str | None = None) -> bool:
        """Atomically move ``item_id`` to ``in_progress`` unless it already is.

        The check and the write happen under one lock acquisition, so of any
        number of concurrent callers for the same id exactly one gets True.
        A previous terminal state is replaced with a fresh one owned by
        ``run_id``; later transitions that pass a different run id are ignored.
        """
        with self._lock:
            existing = self._states.get(item_id)
            if existing is not None and existing.status == "in_progress":
                return False
            self._states[item_id] = ReviewState(
                item_id=item_id,
                status="in_progress",
                stage=_FIRST_STAGE,
                progress=STAGE_PROGRESS[_FIRST_STAGE],
                started_at=_now(),
                run_id=run_id,
            )
        logger.debug("Review %s begun (run %s)", item_id, run_id)
        return True

    def update_stage(self, item_id: str, stage: str, run_id: str | None = None) -> bool:
        progress = _progress(stage)
        if progress is None:
            return False
        with self._lock:
            existing = self._states.get(item_id)
            if existing is None or existing.status != "in_progress" or _stale(existing, run_id):
                return False
            self._states[item_id] = replace(existing, stage=stage, progress=progress)
        logger.debug("Review %s stage -> %s", item_id, stage)
        return True

    def set_completed(self, item_id: str, result: ReviewResult, run_id: str | None = None) -> ReviewState | None:
        """Record ``result``. Returns None when ``run_id`` no longer owns the entry."""
        with self._lock:
            existing = self._states.get(item_id)
            if _stale(existing, run_id):
                return None
            state = ReviewState(
                item_id=item_id,
                status="completed",
                progress=100,
                result=result,
                started_at=existing.started_at if existing else None,
                completed_at=_now(),
                inline_annotations=existing.inline_annotations if existing else None,
                run_id=existing.run_id if existing else None,
            )
            self._states[item_id] = state
        logger.debug("Review %s -> completed", item_id)
        return state

    def set_failed(self, item_id: str, error: str, run_id: str | None = None) -> ReviewState | None:
        with self._lock:
            existing = self._states.get(item_id)
            if _stale(existing, run_id):
                return None
            state = ReviewState(
                item_id=item_id,
                status="failed",
                progress=existing.progress if existing else 0,
                error=error,
                started_at=existing.started_at if existing else None,
                completed_at=_now(),
                run_id=existing.run_id if existing else None,
            )
            self._states[item_id] = state
        logger.debug("Review %s -> failed: %s", item_id, error)
        return state

    def set_cancelled(self, item_id: str, run_id: str | None = None) -> bool:
        """Cancel an in-progress review. Any other state is left untouched."""
        with self._lock:
            existing = self._states.get(item_id)
            if existing is None or existing.status != "in_progress" or _stale(existing, run_id):
                return False
            self._states[item_id] = ReviewState(
                item_id=item_id,
                status="cancelled",
                progress=existing.progress,
                started_at=existing.started_at,
                completed_at=_now(),
                run_id=existing.run_id,
            )
        logger.debug("Review %s -> cancelled", item_id)
        return True

    def set_inline_annotations(
        self, item_id: str, annotations: Iterable[InlineAnnotation], run_id: str | None = None
    ) -> bool:
        annotations = tuple(annotations)
        with self._lock:
            existing = self._states.get(item_id)
            if existing is None or _stale(existing, run_id):
                return False
            self._states[item_id] = replace(existing, inline_annotations=annotations)
        return True

    def owned_by(self, item_id: str, run_id: str) -> bool:
        state = self.get(item_id)
        return state is not None and state.run_id == run_id

    def set_annotation_selected(self, item_id: str, index: int, selected: bool) -> bool:
        """Toggle publication of one annotation. The only caller-controlled field."""
        with self._lock:
            existing = self._states.get(item_id)
            if existing is None or not existing.inline_annotations:
                return False
            annotations = list(existing.inline_annotations)
            if not 0 <= index < len(annotations):
                return False
            annotations[index] = replace(annotations[index], selected=selected)
            self._states[item_id] = replace(existing, inline_annotations=tuple(annotations))
        return True

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    def get(self, item_id: str) -> ReviewState | None:
        with self._lock:
            return self._states.get(item_id)

    def get_result(self, item_id: str) -> ReviewResult | None:
        state = self.get(item_id)
        return state.result if state else None

    def get_inline_annotations(self, item_id: str) -> tuple[InlineAnnotation, ...]:
        state = self.get(item_id)
        if state is None or state.inline_annotations is None:
            return ()
        return state.inline_annotations

    def has(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._states

    def is_in_progress(self, item_id: str) -> bool:
        state = self.get(item_id)
        return state is not None and state.status == "in_progress"

    def all(self) -> list[ReviewState]:
        with self._lock:
            return list(self._states.values())

    def pending(self) -> list[ReviewState]:
        return [s for s in self.all() if s.status in ("pending", "in_progress")]

    def completed(self) -> list[ReviewState]:
        return [s for s in self.all() if s.status == "completed"]

    # ------------------------------------------------------------------ #
    # Removal                                                              #
    # ------------------------------------------------------------------ #

    def clear(self, item_id: str) -> bool:
        with self._lock:
            return self._states.pop(item_id, None) is not None

    def clear_all(self) -> None:
        with self._lock:
            self._states.clear()
