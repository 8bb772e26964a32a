"""ReviewEngine: the operations exposed to the CLI and any other front end.

Reviews run synchronously on the calling thread; callers that want several
reviews in flight run ``start_review`` on worker threads. The engine refuses
to start a second review for an item that is already in progress, so at most
one external process runs per item.

No tool, GitHub or parse failure escapes ``start_review``: every outcome is
recorded as a terminal ReviewState and returned.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from prpal_core.config import DEFAULT_CONFIG
from prpal_core.errors import ItemNotFoundError, ProcessError, ReviewCancelled, ReviewInProgressError
from prpal_core.executor import ProcessExecutor
from prpal_core.gh.pull_request import ItemSource, format_files_as_diff
from prpal_core.gh.publisher import build_review_payload
from prpal_core.models import ReviewableItem, ReviewAgent
from prpal_core.orchestrator import CancellationToken, Orchestrator, ReviewOptions
from prpal_core.skills import SkillLibrary
from prpal_store import ItemStore, ReviewState, ReviewStore, SyncResult

logger = logging.getLogger(__name__)


class ReviewEngine:
    def __init__(
        self,
        source: ItemSource,
        config: Optional[dict] = None,
        items: Optional[ItemStore] = None,
        reviews: Optional[ReviewStore] = None,
        orchestrator: Optional[Orchestrator] = None,
    ):
        self.source = source
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.items = items or ItemStore()
        self.reviews = reviews or ReviewStore()
        if orchestrator is None:
            executor = ProcessExecutor(kill_grace=self.config["kill_grace_seconds"])
            library = SkillLibrary(self.config.get("skills_folder"), self.config.get("memories_folder"))
            orchestrator = Orchestrator(executor, library)
        self.orchestrator = orchestrator

    # ------------------------------------------------------------------ #
    # Items                                                                #
    # ------------------------------------------------------------------ #

    def sync_items(self, snapshot: Iterable[ReviewableItem], attention_ids: Iterable[str] = ()) -> SyncResult:
        result = self.items.sync(snapshot, set(attention_ids))
        # Finished reviews of closed PRs are of no further use.
        for item_id in result.removed:
            if not self.reviews.is_in_progress(item_id):
                self.reviews.clear(item_id)
        return result

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    def start_review(
        self,
        item_id: str,
        agent: Optional[ReviewAgent] = None,
        model: Optional[str] = None,
    ) -> ReviewState:
        """Review ``item_id`` and return its terminal ReviewState.

        Raises ItemNotFoundError for an unknown item and ReviewInProgressError
        when a review for it is already running, including a cancelled one
        whose process has not exited yet; nothing is changed in either case.
        """
        item_state = self.items.get(item_id)
        if item_state is None:
            raise ItemNotFoundError(item_id)
        # A cancelled run keeps its token until its thread has finished.
        if self.orchestrator.is_active(item_id):
            raise ReviewInProgressError(f"Previous review of {item_id} is still shutting down")
        token = CancellationToken(item_id)
        if not self.reviews.begin(item_id, run_id=token.run_id):
            raise ReviewInProgressError(f"Review already in progress for {item_id}")

        item = item_state.item
        previous_status = item_state.lifecycle_status
        self.orchestrator.track(item_id, token)
        self.items.update_status(item_id, "reviewing")
        logger.info("Starting review of %s with agent %s", item_id, agent.id if agent else "default")

        try:
            result = self._run(item, agent, model, token)
        except ReviewCancelled:
            self._finish_cancelled(token, previous_status)
        except ProcessError as e:
            if token.cancelled:
                self._finish_cancelled(token, previous_status)
            else:
                logger.error("Review of %s failed: %s", item_id, e)
                self._finish_failed(token, str(e), previous_status)
        except Exception as e:
            if token.cancelled:
                self._finish_cancelled(token, previous_status)
            else:
                logger.exception("Unexpected error reviewing %s", item_id)
                self._finish_failed(token, str(e) or e.__class__.__name__, previous_status)
        else:
            if token.cancelled:
                # Cancelled after the last checkpoint; the result is discarded.
                self._finish_cancelled(token, previous_status)
            elif self.reviews.set_completed(item_id, result, run_id=token.run_id) is not None:
                self.reviews.set_inline_annotations(item_id, result.annotations, run_id=token.run_id)
                self.items.update_status(item_id, "reviewed")
        finally:
            self.orchestrator.release(token)

        return self.reviews.get(item_id)

    def _run(self, item: ReviewableItem, agent: Optional[ReviewAgent], model: Optional[str], token: CancellationToken):
        self._advance(item.id, "fetching_diff", token)
        files = self.source.fetch_files(item)
        diff = format_files_as_diff(files)

        self._advance(item.id, "analyzing", token)
        options = ReviewOptions(
            diff=diff,
            files=files,
            agent=agent,
            model=model or (agent.model if agent else None) or self.config.get("model"),
            timeout=float(self.config["timeout_seconds"]),
            tool_path=self.config.get("tool_path"),
            on_stage=lambda stage: self.reviews.update_stage(item.id, stage, run_id=token.run_id),
        )
        return self.orchestrator.run(item, options, token)

    def _advance(self, item_id: str, stage: str, token: CancellationToken) -> None:
        token.raise_if_cancelled()
        self.reviews.update_stage(item_id, stage, run_id=token.run_id)

    def _finish_failed(self, token: CancellationToken, error: str, previous_status: str) -> None:
        if self.reviews.set_failed(token.item_id, error, run_id=token.run_id) is not None:
            self.items.update_status(token.item_id, previous_status)

    def _finish_cancelled(self, token: CancellationToken, previous_status: str) -> None:
        # cancel_review may already have recorded the cancellation.
        self.reviews.set_cancelled(token.item_id, run_id=token.run_id)
        if self.reviews.owned_by(token.item_id, token.run_id):
            self.items.update_status(token.item_id, previous_status)
        logger.info("Review of %s cancelled", token.item_id)

    def get_review(self, item_id: str) -> Optional[ReviewState]:
        return self.reviews.get(item_id)

    def cancel_review(self, item_id: str) -> bool:
        """Cancel the in-flight review of ``item_id``. False when none is running.

        The state turns ``cancelled`` at once; a new review of the item is
        refused until the cancelled run has released it.
        """
        token = self.orchestrator.token_for(item_id)
        if token is None or not self.orchestrator.cancel(item_id):
            return False
        self.reviews.set_cancelled(item_id, run_id=token.run_id)
        return True

    def set_annotation_selected(self, item_id: str, index: int, selected: bool) -> bool:
        return self.reviews.set_annotation_selected(item_id, index, selected)

    # ------------------------------------------------------------------ #
    # Publishing                                                           #
    # ------------------------------------------------------------------ #

    def publish(
        self,
        item_id: str,
        sink,
        verdict: Optional[str] = None,
        selected_indices: Optional[Iterable[int]] = None,
        edited_body: Optional[str] = None,
    ):
        """Hand the completed review of ``item_id`` to ``sink``.

        ``sink(item, body, event, comments)`` performs the actual posting
        (``publisher.post_review`` bound to a client, in production).
        """
        state = self.reviews.get(item_id)
        if state is None or state.status != "completed" or state.result is None:
            raise ValueError(f"No completed review for {item_id}")
        item_state = self.items.get(item_id)
        if item_state is None:
            raise ItemNotFoundError(item_id)

        fmt = self.config.get("review_format") or {}
        body, event, comments = build_review_payload(
            state.result.review,
            verdict=verdict,
            annotations=state.inline_annotations or (),
            selected_indices=selected_indices,
            style=fmt.get("style", "standard"),
            attribution=fmt.get("attribution", "subtle"),
            signature=fmt.get("signature"),
            edited_body=edited_body,
        )
        return sink(item_state.item, body, event, comments)
