"""Tests for the review queue filters."""

from prpal_core.gh.filters import filter_for_review, is_team_requested, is_user_requested, needs_attention_ids
from prpal_core.models import ReviewableItem


def _item(number, author="alice", reviewers=(), teams=(), draft=False):
    return ReviewableItem(
        id=f"acme/api#{number}",
        number=number,
        title=f"PR {number}",
        repo_owner="acme",
        repo_name="api",
        author=author,
        requested_reviewers=tuple(reviewers),
        requested_teams=tuple(teams),
        draft=draft,
    )


ITEMS = [
    _item(1, reviewers=["Me"]),
    _item(2, teams=["backend"]),
    _item(3),
    _item(4, author="me"),
    _item(5, reviewers=["me"], draft=True),
]


def test_user_requested_is_case_insensitive():
    assert is_user_requested(_item(1, reviewers=["OctoCat"]), "octocat") is True


def test_team_requested():
    assert is_team_requested(_item(1, teams=["backend"]), ["frontend", "backend"]) is True
    assert is_team_requested(_item(1, teams=["backend"]), []) is False


def test_show_all_excludes_own_and_drafts():
    assert [i.number for i in filter_for_review(ITEMS, "me", ["backend"], show_all=True)] == [1, 2, 3]


def test_requested_only():
    assert [i.number for i in filter_for_review(ITEMS, "me", ["backend"], show_all=False)] == [1, 2]


def test_requested_only_without_teams():
    assert [i.number for i in filter_for_review(ITEMS, "me")] == [1]


def test_needs_attention_ids():
    assert needs_attention_ids(ITEMS, "me", ["backend"]) == {"acme/api#1", "acme/api#2"}
