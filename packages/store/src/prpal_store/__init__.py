"""In-memory, thread-safe state stores for the review engine."""

from prpal_store.items import ItemStore
from prpal_store.models import LIFECYCLE_STATUSES, REVIEW_STATUSES, STAGE_PROGRESS, ItemState, ReviewState, SyncResult
from prpal_store.reviews import ReviewStore

__all__ = [
    "ItemStore",
    "ReviewStore",
    "ItemState",
    "ReviewState",
    "SyncResult",
    "LIFECYCLE_STATUSES",
    "REVIEW_STATUSES",
    "STAGE_PROGRESS",
]
