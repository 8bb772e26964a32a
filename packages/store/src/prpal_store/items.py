"""ItemStore: the working set of open pull requests.

The poll thread calls ``sync`` while request handlers read and update
statuses, so every operation takes one coarse lock. Nothing under the lock
does I/O. Listeners are called after the lock is released so that a listener
may read the store again without deadlocking.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Iterable

from prpal_store.models import LIFECYCLE_STATUSES, ItemState, SyncResult

if TYPE_CHECKING:
    from prpal_core.models import ReviewableItem

logger = logging.getLogger(__name__)

# Called with (item_id, state); state is None when the item was removed.
ChangeListener = Callable[[str, "ItemState | None"], None]

# Lifecycle status -> the timestamp stamped the first time it is reached.
_STATUS_TIMESTAMPS = {
    "seen": "seen_at",
    "reviewing": "review_started_at",
    "reviewed": "review_completed_at",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ItemStore:
    def __init__(self):
        self._states: dict[str, ItemState] = {}
        self._listeners: list[ChangeListener] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    def get(self, item_id: str) -> ItemState | None:
        with self._lock:
            return self._states.get(item_id)

    def all(self) -> list[ItemState]:
        with self._lock:
            return list(self._states.values())

    def by_status(self, status: str) -> list[ItemState]:
        return [s for s in self.all() if s.lifecycle_status == status]

    def new_items(self) -> list[ItemState]:
        return self.by_status("new")

    def pending_review(self) -> list[ItemState]:
        return [s for s in self.all() if s.lifecycle_status in ("new", "seen")]

    def needing_attention(self) -> list[ItemState]:
        return [s for s in self.all() if s.needs_attention]

    def others(self) -> list[ItemState]:
        return [s for s in self.all() if not s.needs_attention]

    def count(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._states

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    def upsert(self, item: ReviewableItem, needs_attention: bool = False) -> ItemState:
        """Insert a new item as ``new``, or refresh an existing one's data.

        Refreshing replaces the item and the attention flag but keeps the
        lifecycle status and its timestamps.
        """
        with self._lock:
            state = self._upsert_locked(item, needs_attention)
        self._notify([(state.item_id, state)])
        return state

    def _upsert_locked(self, item: ReviewableItem, needs_attention: bool) -> ItemState:
        existing = self._states.get(item.id)
        if existing is None:
            state = ItemState(item=item, needs_attention=needs_attention)
            logger.info("New item added: %s", item.id)
        else:
            state = replace(existing, item=item, needs_attention=needs_attention)
        self._states[item.id] = state
        return state

    def update_status(self, item_id: str, status: str) -> ItemState | None:
        """Move an item to ``status``. Unknown ids are ignored (returns None)."""
        if status not in LIFECYCLE_STATUSES:
            raise ValueError(f"Unknown lifecycle status: {status!r}")

        with self._lock:
            existing = self._states.get(item_id)
            if existing is None:
                return None
            changes: dict = {"lifecycle_status": status}
            stamp = _STATUS_TIMESTAMPS.get(status)
            if stamp and getattr(existing, stamp) is None:
                changes[stamp] = _now()
            state = replace(existing, **changes)
            self._states[item_id] = state

        logger.debug("Item %s -> %s", item_id, status)
        self._notify([(state.item_id, state)])
        return state

    def remove(self, item_id: str) -> bool:
        with self._lock:
            removed = self._states.pop(item_id, None) is not None
        if removed:
            logger.debug("Item removed: %s", item_id)
            self._notify([(item_id, None)])
        return removed

    def sync(self, snapshot: Iterable[ReviewableItem], attention_ids: set[str] | frozenset[str]) -> SyncResult:
        """Reconcile the store with a freshly fetched snapshot of open items.

        Present items are upserted, absent ones deleted. Running the same
        snapshot twice yields empty ``added``/``removed`` the second time.
        """
        snapshot = list(snapshot)
        result = SyncResult()
        with self._lock:
            previous = set(self._states)
            current = set()
            changed = []
            for item in snapshot:
                if item.id in current:
                    continue  # duplicate in snapshot; first one wins
                current.add(item.id)
                (result.updated if item.id in previous else result.added).append(item.id)
                state = self._upsert_locked(item, item.id in attention_ids)
                changed.append((item.id, state))
            for item_id in previous - current:
                del self._states[item_id]
                result.removed.append(item_id)
                changed.append((item_id, None))

        if result.added or result.removed:
            logger.info(
                "Synced %d item(s): %d added, %d removed",
                len(current),
                len(result.added),
                len(result.removed),
            )
        self._notify(changed)
        return result

    def clear(self) -> None:
        with self._lock:
            removed = list(self._states)
            self._states.clear()
        logger.debug("All items cleared")
        self._notify([(item_id, None) for item_id in removed])

    # ------------------------------------------------------------------ #
    # Listeners                                                            #
    # ------------------------------------------------------------------ #

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Register ``listener(item_id, state)``; returns a function that removes it.

        Upserts and status changes pass the new state. Removal by ``remove``,
        ``sync`` or ``clear`` passes None.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, changes: list[tuple[str, ItemState | None]]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for item_id, state in changes:
            for listener in listeners:
                try:
                    listener(item_id, state)
                except Exception:
                    logger.exception("Item listener failed for %s", item_id)
