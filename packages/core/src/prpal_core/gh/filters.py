"""Decide which open pull requests belong in the user's review queue."""

from __future__ import annotations

import logging
from typing import Iterable

from prpal_core.models import ReviewableItem

logger = logging.getLogger(__name__)


def is_author(item: ReviewableItem, username: str) -> bool:
    return item.author.lower() == username.lower()


def is_user_requested(item: ReviewableItem, username: str) -> bool:
    return username.lower() in {r.lower() for r in item.requested_reviewers}


def is_team_requested(item: ReviewableItem, team_slugs: Iterable[str]) -> bool:
    return bool(set(item.requested_teams) & set(team_slugs))


def should_show(item: ReviewableItem, username: str, team_slugs: Iterable[str], show_all: bool) -> bool:
    # Never the user's own PRs, never drafts.
    if is_author(item, username) or item.draft:
        return False
    if show_all:
        return True
    return is_user_requested(item, username) or is_team_requested(item, team_slugs)


def filter_for_review(
    items: list[ReviewableItem],
    username: str,
    team_slugs: Iterable[str] = (),
    show_all: bool = False,
) -> list[ReviewableItem]:
    team_slugs = list(team_slugs)
    filtered = [i for i in items if should_show(i, username, team_slugs, show_all)]
    logger.debug("Filtered %d PR(s) for review from %d total", len(filtered), len(items))
    return filtered


def needs_attention_ids(items: list[ReviewableItem], username: str, team_slugs: Iterable[str] = ()) -> set[str]:
    """Ids of the items that explicitly request the user or one of their teams."""
    return {i.id for i in filter_for_review(items, username, team_slugs, show_all=False)}
