"""Format an extracted review and post it to GitHub.

Only *valid* selected annotations can be posted as inline comments; GitHub
rejects comments on lines outside the diff. Selected annotations that could
not be anchored are listed at the end of the review body instead, so that no
finding the user chose to publish is silently dropped.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from prpal_core.models import ExtractedReview, InlineAnnotation, ReviewableItem, ReviewIssue

logger = logging.getLogger(__name__)

# GitHub caps the number of comments accepted in one review request.
DEFAULT_BATCH_LIMIT = 60

_SEVERITY_EMOJI = {"critical": "🔴", "warning": "🟠", "info": "🟡"}
_SEVERITY_LABEL = {"critical": "Critical", "warning": "Warning", "info": "Info"}
_SEVERITY_HEADING = {"critical": "Critical", "warning": "Needs Attention", "info": "Info"}

_VERDICT_EVENT = {"approve": "APPROVE", "request_changes": "REQUEST_CHANGES", "comment": "COMMENT"}
_VERDICT_LINE = {
    "approve": "**Verdict:** ✅ Looks good to merge!",
    "request_changes": "**Verdict:** ⚠️ Please address the issues above.",
    "comment": "**Verdict:** 💬 Review complete.",
}

ATTRIBUTION_TEXT = {
    "none": "",
    "subtle": "*Assisted by AI review*",
    "full": "*This review was assisted by OpenCode AI*",
}


def verdict_to_event(verdict: str) -> str:
    return _VERDICT_EVENT.get(verdict, "COMMENT")


def _location(issue: ReviewIssue) -> str:
    if not issue.file:
        return ""
    return f"`{issue.file}:{issue.line}`" if issue.line else f"`{issue.file}`"


def _add_attribution(body: str, attribution: str, signature: Optional[str]) -> str:
    text = ATTRIBUTION_TEXT.get(attribution, "")
    if text:
        body += f"\n\n---\n{text}"
    if signature:
        body += f"\n\n{signature}"
    return body


def _format_minimal(review: ExtractedReview) -> str:
    parts = [review.summary]
    if review.issues:
        parts.append("\n**Issues:**")
        parts.extend(" ".join(filter(None, ["-", _location(i), i.message])) for i in review.issues)
    if review.suggestions:
        parts.append("\n**Suggestions:**")
        parts.extend(f"- {s.message}" for s in review.suggestions)
    return "\n".join(parts)


def _format_issues_by_severity(issues: Iterable[ReviewIssue], detailed: bool) -> str:
    issues = list(issues)
    parts = []
    for severity in ("critical", "warning", "info"):
        group = [i for i in issues if i.severity == severity]
        if not group:
            continue
        parts.append(f"\n**{_SEVERITY_EMOJI[severity]} {_SEVERITY_HEADING[severity]} ({len(group)})**\n")
        for issue in group:
            loc = _location(issue)
            parts.append(f"- {loc} - {issue.message}" if loc else f"- {issue.message}")
            if detailed and issue.suggestion:
                parts.append(f"  - *Suggestion:* {issue.suggestion}")
    return "\n".join(parts).lstrip("\n")


def _format_standard(review: ExtractedReview, detailed: bool = False) -> str:
    sections = ["## Code Review\n", f"### Summary\n{review.summary}\n"]
    if review.issues:
        sections.append("### Issues\n" + _format_issues_by_severity(review.issues, detailed) + "\n")
    if review.suggestions:
        sections.append("### Suggestions\n")
        sections.extend(f"- {s.message}" for s in review.suggestions)
    if detailed and review.positives:
        sections.append("\n### What's Good\n")
        sections.extend(f"- {p}" for p in review.positives)
    sections.append("\n---\n" + _VERDICT_LINE.get(review.verdict, _VERDICT_LINE["comment"]))
    return "\n".join(sections)


def format_review_body(
    review: ExtractedReview,
    style: str = "standard",
    attribution: str = "subtle",
    signature: Optional[str] = None,
) -> str:
    """Render the top-level review body in ``minimal``, ``standard`` or ``detailed`` style."""
    if style == "minimal":
        body = _format_minimal(review)
    else:
        body = _format_standard(review, detailed=style == "detailed")
    return _add_attribution(body, attribution, signature)


def format_inline_comment(issue: ReviewIssue) -> str:
    emoji = _SEVERITY_EMOJI.get(issue.severity, "🟡")
    label = _SEVERITY_LABEL.get(issue.severity, "Info")
    body = f"{emoji} **{label}**: {issue.message}"
    if issue.suggestion:
        body += f"\n\n**Suggestion:**\n{issue.suggestion}"
    return body


def _is_selected(index: int, annotation: InlineAnnotation, selected_indices: Optional[set[int]]) -> bool:
    if selected_indices is None:
        return annotation.selected
    return index in selected_indices


def build_review_payload(
    review: ExtractedReview,
    verdict: Optional[str] = None,
    annotations: Iterable[InlineAnnotation] = (),
    selected_indices: Optional[Iterable[int]] = None,
    style: str = "standard",
    attribution: str = "subtle",
    signature: Optional[str] = None,
    edited_body: Optional[str] = None,
) -> tuple[str, str, list[dict]]:
    """Return ``(body, event, comments)`` ready for ``PullRequest.create_review``.

    ``selected_indices`` indexes into ``annotations``; None means "use each
    annotation's own ``selected`` flag".
    """
    annotations = list(annotations)
    indices = set(selected_indices) if selected_indices is not None else None
    chosen = [a for i, a in enumerate(annotations) if _is_selected(i, a, indices)]

    comments = [
        {"path": a.file, "line": a.actual_line, "side": "RIGHT", "body": format_inline_comment(a.issue)}
        for a in chosen
        if a.is_valid
    ]
    unanchored = [a for a in chosen if not a.is_valid]

    body = edited_body if edited_body is not None else format_review_body(review, style, attribution, signature)
    if unanchored:
        body += "\n\n---\n**Additional comments (could not be posted inline):**\n"
        for a in unanchored:
            body += f"\n- `{a.file}:{a.requested_line}`: {a.issue.message}"
            if a.warning:
                body += f" *({a.warning})*"

    return body, verdict_to_event(verdict or review.verdict), comments


def post_review(
    gh,
    item: ReviewableItem,
    body: str,
    event: str,
    comments: list[dict],
    batch_limit: int = DEFAULT_BATCH_LIMIT,
):
    """Post the review, splitting comments across requests when above ``batch_limit``.

    Earlier batches are posted as COMMENT; the final one carries the body and
    the real event. Returns the last created PullRequestReview.
    """
    pr = gh.get_repo(item.full_name).get_pull(item.number)
    logger.info(
        "Posting review to %s as %s with %d inline comment(s)",
        item.id,
        event,
        len(comments),
    )

    if not comments:
        return pr.create_review(body=body, event=event)

    batches = [comments[i : i + batch_limit] for i in range(0, len(comments), batch_limit)]
    posted = 0
    review = None
    for idx, batch in enumerate(batches):
        is_last = idx == len(batches) - 1
        posted += len(batch)
        batch_body = body if is_last else f"Review in progress ({posted}/{len(comments)} comments)..."
        batch_event = event if is_last else "COMMENT"
        review = pr.create_review(body=batch_body, event=batch_event, comments=batch)
    return review
