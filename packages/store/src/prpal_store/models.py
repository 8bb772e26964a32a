"""State records held by the in-memory stores.

Decoupled from prpal_core at runtime: the stores hold core objects (items,
review results, annotations) but never call into them, so the core types are
imported for type checking only.

Records are frozen. Stores replace a record on every transition and hand the
same immutable object to callers, so a caller can never mutate store state
behind the store's lock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prpal_core.models import InlineAnnotation, ReviewableItem, ReviewResult

# Item lifecycle, independent of the review status.
LIFECYCLE_STATUSES = ("new", "seen", "reviewing", "reviewed", "dismissed")

REVIEW_STATUSES = ("pending", "in_progress", "completed", "failed", "cancelled")

# Ordered stages of an in-progress review and the progress each one reports.
STAGE_PROGRESS: dict[str, int] = {
    "starting": 10,
    "fetching_diff": 25,
    "analyzing": 50,
    "generating": 75,
    "parsing": 90,
}


@dataclass(frozen=True)
class ItemState:
    item: ReviewableItem
    lifecycle_status: str = "new"
    needs_attention: bool = False
    seen_at: datetime | None = None
    review_started_at: datetime | None = None
    review_completed_at: datetime | None = None

    @property
    def item_id(self) -> str:
        return self.item.id


@dataclass(frozen=True)
class ReviewState:
    item_id: str
    status: str  # one of REVIEW_STATUSES
    stage: str | None = None  # only meaningful while in_progress
    progress: int = 0
    result: ReviewResult | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    inline_annotations: tuple[InlineAnnotation, ...] | None = None
    run_id: str | None = None  # identifies the run that owns this state

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


@dataclass(frozen=True)
class SyncResult:
    """Identity delta of one sync. ``added``, ``updated`` and ``removed`` are disjoint."""

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
