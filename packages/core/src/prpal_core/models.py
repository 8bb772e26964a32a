"""Domain models shared by the review engine.

Everything here is a plain dataclass. Items and the review output are frozen:
they are produced once (fetched from GitHub, extracted from tool output) and
replaced wholesale rather than edited, so they can be handed across threads
without copying.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

SEVERITIES = ("critical", "warning", "info")
VERDICTS = ("approve", "request_changes", "comment")


@dataclass(frozen=True)
class ChangedFile:
    """One file of a pull request as returned by the files endpoint."""

    filename: str
    status: str = "modified"  # "added" | "removed" | "modified" | "renamed" | ...
    additions: int = 0
    deletions: int = 0
    patch: str | None = None  # None for binary files and very large diffs


@dataclass(frozen=True)
class ReviewableItem:
    """An open pull request eligible for review.

    ``id`` is the stable identity used by every store and by cancellation:
    ``"{owner}/{name}#{number}"``.
    """

    id: str
    number: int
    title: str
    repo_owner: str
    repo_name: str
    author: str = ""
    body: str | None = None
    base_ref: str = ""
    head_ref: str = ""
    head_sha: str = ""
    html_url: str = ""
    draft: bool = False
    requested_reviewers: tuple[str, ...] = ()
    requested_teams: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    updated_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"

    @staticmethod
    def make_id(full_name: str, number: int) -> str:
        return f"{full_name}#{number}"


@dataclass(frozen=True)
class ReviewIssue:
    severity: str  # one of SEVERITIES
    message: str
    file: str | None = None
    line: int | None = None
    end_line: int | None = None
    suggestion: str | None = None


@dataclass(frozen=True)
class ReviewSuggestion:
    message: str
    file: str | None = None
    line: int | None = None
    code: str | None = None


@dataclass(frozen=True)
class ExtractedReview:
    """The normalized review the external tool produced."""

    summary: str
    verdict: str  # one of VERDICTS
    issues: tuple[ReviewIssue, ...] = ()
    suggestions: tuple[ReviewSuggestion, ...] = ()
    positives: tuple[str, ...] | None = None


@dataclass(frozen=True)
class InlineAnnotation:
    """An issue mapped onto a diff line, ready to be posted as an inline comment.

    When ``is_valid`` is False, ``actual_line`` still equals ``requested_line``
    and does NOT point at a line of the diff; callers must not post it inline.
    """

    issue: ReviewIssue
    file: str
    requested_line: int
    actual_line: int
    is_valid: bool
    issue_index: int
    selected: bool = False
    warning: str | None = None
    code: str = ""  # source text of actual_line, empty when invalid


@dataclass(frozen=True)
class ReviewAgent:
    """A reviewer persona: base prompt plus topical skills and an optional model."""

    id: str
    name: str
    prompt: str
    model: str | None = None
    skills: tuple[str, ...] = ()  # built-in ids, or "custom:<id>" for folder skills
    description: str = ""


@dataclass(frozen=True)
class ReviewResult:
    """What a single orchestrator run returns."""

    item_id: str
    item_number: int
    agent_id: str
    review: ExtractedReview
    raw_response: str
    duration_seconds: float
    annotations: tuple[InlineAnnotation, ...] = ()
    model: str | None = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
