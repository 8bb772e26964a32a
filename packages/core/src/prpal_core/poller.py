"""Poll driver: periodically sync the item store with the open PRs on GitHub.

A poll never raises. Fetch failures are logged and reported as an empty
result so that the background thread keeps running until ``stop``.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from prpal_core.gh.filters import filter_for_review, needs_attention_ids
from prpal_core.gh.pull_request import ItemSource
from prpal_core.models import ReviewableItem

logger = logging.getLogger(__name__)

PollCallback = Callable[[list[ReviewableItem], list[ReviewableItem]], None]


class Poller:
    def __init__(
        self,
        source: ItemSource,
        engine,
        username: str,
        team_slugs: Iterable[str] = (),
        show_all: bool = True,
        callback: Optional[PollCallback] = None,
    ):
        self.source = source
        self.engine = engine
        self.username = username
        self.team_slugs = list(team_slugs)
        self.show_all = show_all
        self.last_poll_time: Optional[datetime] = None
        self.poll_count = 0
        self._callback = callback
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._poll_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def poll_now(self) -> list[ReviewableItem]:
        """Fetch, filter and sync once. Returns the items now tracked (empty on failure)."""
        # Serialises a manual poll with the background one.
        with self._poll_lock:
            return self._poll()

    def _poll(self) -> list[ReviewableItem]:
        logger.debug("Running poll")
        try:
            snapshot = self.source.fetch_open_items()
        except Exception as e:
            logger.warning("Poll failed: %s", e)
            return []

        visible = filter_for_review(snapshot, self.username, self.team_slugs, show_all=self.show_all)
        attention = needs_attention_ids(snapshot, self.username, self.team_slugs)
        result = self.engine.sync_items(visible, attention)

        self.last_poll_time = datetime.now(timezone.utc)
        self.poll_count += 1
        if result.added:
            logger.info("Found %d new PR(s), %d need my review", len(result.added), len(attention))

        if self._callback is not None:
            added = set(result.added)
            try:
                self._callback([i for i in visible if i.id in added], visible)
            except Exception:
                logger.exception("Poll callback failed")
        return visible

    def start(self, interval_seconds: float, callback: Optional[PollCallback] = None) -> None:
        """Poll immediately, then every ``interval_seconds`` on a daemon thread."""
        if self.is_running:
            logger.warning("Polling already running")
            return

        if callback is not None:
            self._callback = callback
        self._stop.clear()
        logger.info("Starting polling every %ss", interval_seconds)
        self._thread = threading.Thread(target=self._loop, args=(interval_seconds,), name="prpal-poller", daemon=True)
        self._thread.start()

    def _loop(self, interval_seconds: float) -> None:
        while not self._stop.is_set():
            self.poll_now()
            self._stop.wait(interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("Polling stopped")
