"""Turn the external tool's stdout into an ExtractedReview.

The tool is asked for JSON but answers like a language model: sometimes bare
JSON, sometimes JSON inside a markdown fence, sometimes JSON buried in prose,
and in ``--format json`` mode all of it wrapped in newline-delimited event
objects. Extraction therefore runs in two steps:

1. ``extract_event_text`` unwraps the event stream, if there is one.
2. ``STRATEGIES`` are tried in order until one yields parseable JSON. Later
   strategies are more permissive and more likely to grab the wrong object,
   so the order matters.

Unparseable output never raises: ``extract_review`` degrades to a fallback
review carrying a prefix of the text, so the user still sees something.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable

from prpal_core.models import ExtractedReview, ReviewIssue, ReviewSuggestion

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "Review completed"
FALLBACK_SUMMARY = "Review completed. See raw output for details."
FALLBACK_PREVIEW_CHARS = 500

_JSON_FENCE_RE = re.compile(r"```json\s*([\s\S]*?)```")
_ANY_FENCE_RE = re.compile(r"```\s*([\s\S]*?)```")
# An object literal opening with "summary", running to end of input or the next fence.
_SUMMARY_OBJECT_RE = re.compile(r'\{\s*"summary"\s*:\s*"[\s\S]*?\}(?=\s*\Z|\s*```)')


def extract_event_text(output: str) -> str | None:
    """Concatenate the text parts of a newline-delimited JSON event stream.

    Returns None when the output contains no text events, so the caller can
    fall back to treating the output as the document itself.
    """
    parts: list[str] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        try:
            event = json.loads(line)
        except ValueError:
            continue  # prose line between events
        if not isinstance(event, dict) or event.get("type") != "text":
            continue
        part = event.get("part")
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str) and text:
            parts.append(text)

    if not parts:
        return None
    logger.debug("Extracted %d text part(s) from event stream", len(parts))
    return "\n".join(parts)


# --------------------------------------------------------------------------- #
# Strategies: each is text -> parsed JSON value, or None                       #
# --------------------------------------------------------------------------- #


def _loads(candidate: str) -> Any | None:
    try:
        return json.loads(candidate)
    except ValueError:
        return None


def from_json_fence(text: str) -> Any | None:
    match = _JSON_FENCE_RE.search(text)
    return _loads(match.group(1).strip()) if match else None


def from_any_fence(text: str) -> Any | None:
    match = _ANY_FENCE_RE.search(text)
    return _loads(match.group(1).strip()) if match else None


def from_whole_text(text: str) -> Any | None:
    return _loads(text.strip())


def from_summary_anchor(text: str) -> Any | None:
    match = _SUMMARY_OBJECT_RE.search(text)
    return _loads(match.group(0)) if match else None


def find_balanced_object(text: str) -> str | None:
    """Return the first top-level ``{...}`` span, honouring string literals."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if escaped:
            escaped = False
            continue
        if char == "\\" and in_string:
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def from_balanced_braces(text: str) -> Any | None:
    candidate = find_balanced_object(text)
    return _loads(candidate) if candidate else None


STRATEGIES: list[tuple[str, Callable[[str], Any | None]]] = [
    ("json fence", from_json_fence),
    ("code fence", from_any_fence),
    ("whole text", from_whole_text),
    ("summary anchor", from_summary_anchor),
    ("balanced braces", from_balanced_braces),
]


def extract_json(text: str) -> Any | None:
    for name, strategy in STRATEGIES:
        value = strategy(text)
        if value is not None:
            logger.debug("Parsed review JSON via %s strategy", name)
            return value
        logger.debug("Strategy %s found no parseable JSON", name)
    return None


# --------------------------------------------------------------------------- #
# Normalization                                                                #
# --------------------------------------------------------------------------- #


def normalize_verdict(value: Any) -> str:
    text = str(value).lower()
    if "approve" in text:
        return "approve"
    if "request" in text or "change" in text:
        return "request_changes"
    return "comment"


def normalize_severity(value: Any) -> str:
    text = str(value).lower()
    if "critical" in text or "error" in text:
        return "critical"
    if "warn" in text:
        return "warning"
    return "info"


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _opt_int(value: Any) -> int | None:
    # bool is an int subclass; JSON true is not a line number.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value or None
    if isinstance(value, float) and value.is_integer():
        return int(value) or None
    return None


def _stringify(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def _normalize_issues(value: Any) -> tuple[ReviewIssue, ...]:
    if not isinstance(value, list):
        return ()
    issues = []
    for entry in value:
        if not isinstance(entry, dict):
            continue
        issues.append(
            ReviewIssue(
                severity=normalize_severity(entry.get("severity")),
                message=_opt_str(entry.get("message")) or "Issue detected",
                file=_opt_str(entry.get("file")),
                line=_opt_int(entry.get("line")),
                end_line=_opt_int(entry.get("endLine", entry.get("end_line"))),
                suggestion=_opt_str(entry.get("suggestion")),
            )
        )
    return tuple(issues)


def _normalize_suggestions(value: Any) -> tuple[ReviewSuggestion, ...]:
    if not isinstance(value, list):
        return ()
    suggestions = []
    for entry in value:
        if not isinstance(entry, dict):
            suggestions.append(ReviewSuggestion(message=_stringify(entry)))
            continue
        suggestions.append(
            ReviewSuggestion(
                message=_opt_str(entry.get("message")) or _stringify(entry),
                file=_opt_str(entry.get("file")),
                line=_opt_int(entry.get("line")),
                code=_opt_str(entry.get("code")),
            )
        )
    return tuple(suggestions)


def normalize_review(data: Any) -> ExtractedReview:
    if not isinstance(data, dict):
        return fallback_review(_stringify(data))

    positives = data.get("positives")
    return ExtractedReview(
        summary=_opt_str(data.get("summary")) or DEFAULT_SUMMARY,
        verdict=normalize_verdict(data.get("verdict")),
        issues=_normalize_issues(data.get("issues")),
        suggestions=_normalize_suggestions(data.get("suggestions")),
        positives=tuple(_stringify(p) for p in positives) if isinstance(positives, list) else None,
    )


def fallback_review(text: str) -> ExtractedReview:
    return ExtractedReview(
        summary=FALLBACK_SUMMARY,
        verdict="comment",
        issues=(),
        suggestions=(ReviewSuggestion(message=text[:FALLBACK_PREVIEW_CHARS]),),
    )


def extract_review(output: str) -> ExtractedReview:
    """Parse raw tool stdout into a normalized review. Never raises."""
    event_text = extract_event_text(output)
    document = event_text if event_text is not None else output
    logger.info(
        "Parsing AI response (raw=%d chars, extracted=%d chars, events=%s)",
        len(output),
        len(document),
        event_text is not None,
    )

    data = extract_json(document)
    if data is None:
        logger.warning("Could not extract JSON from AI response; using fallback review")
        logger.debug("Response preview: %s", document[:FALLBACK_PREVIEW_CHARS])
        return fallback_review(document)

    review = normalize_review(data)
    logger.info(
        "Parsed review: verdict=%s issues=%d suggestions=%d",
        review.verdict,
        len(review.issues),
        len(review.suggestions),
    )
    return review
