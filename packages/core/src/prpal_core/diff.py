"""Unified-diff line mapping for inline comments.

GitHub only accepts an inline comment on a line that exists on the RIGHT side
of the diff, i.e. an added or context line of the new file. The AI tool reports
line numbers against the new file as it imagines it, which often lands on a
line outside every hunk. ``validate_line`` decides what to do with such a line:

- exact match: post where requested.
- no exact match: fall back to the closest valid line *before* the request.
  This can attach a finding to a neighbouring line, but a slightly misplaced
  comment is more useful to the author than a dropped one.
- nothing before it: the annotation is invalid and must not be posted inline.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_HUNK_RE = re.compile(r"@@ -\d+,?\d* \+(\d+),?\d* @@")

HUNK = "hunk"
ADD = "add"
DELETE = "delete"
CONTEXT = "context"


@dataclass(frozen=True)
class DiffLine:
    line_number: int  # new-file numbering
    kind: str  # HUNK | ADD | DELETE | CONTEXT


@dataclass(frozen=True)
class LineValidation:
    requested_line: int
    actual_line: int
    is_valid: bool
    warning: str | None = None


def parse_patch(patch: str) -> list[DiffLine]:
    """Classify every body line of a patch with its new-file line number.

    Added and context lines consume a new-file line; deleted lines are reported
    at the current counter without advancing it. File headers (``---``/``+++``)
    and ``\\ No newline at end of file`` markers are skipped, as is anything
    before the first hunk header (``diff --git``/``index`` preambles).
    """
    result: list[DiffLine] = []
    if not patch:
        return result

    new_line: int | None = None
    for line in patch.splitlines():
        if line.startswith("@@"):
            match = _HUNK_RE.match(line)
            if match:
                new_line = int(match.group(1))
            elif new_line is None:
                logger.debug("Unparseable leading hunk header: %r", line)
                continue
            result.append(DiffLine(new_line, HUNK))
            continue

        if line.startswith("---") or line.startswith("+++") or line.startswith("\\"):
            continue
        if new_line is None:
            continue

        if line.startswith("+"):
            result.append(DiffLine(new_line, ADD))
            new_line += 1
        elif line.startswith("-"):
            result.append(DiffLine(new_line, DELETE))
        else:
            result.append(DiffLine(new_line, CONTEXT))
            new_line += 1

    return result


def valid_line_numbers(patch: str) -> list[int]:
    """New-file lines that can host an inline comment (added + context)."""
    return [d.line_number for d in parse_patch(patch) if d.kind in (ADD, CONTEXT)]


def find_closest_line_before(line: int, valid_lines: list[int]) -> int | None:
    candidates = [v for v in valid_lines if v <= line]
    if not candidates:
        return None
    return max(candidates)


def validate_line(line: int, patch: str) -> LineValidation:
    valid_lines = valid_line_numbers(patch)

    if line in valid_lines:
        return LineValidation(requested_line=line, actual_line=line, is_valid=True)

    closest = find_closest_line_before(line, valid_lines)
    if closest is None:
        return LineValidation(
            requested_line=line,
            actual_line=line,
            is_valid=False,
            warning=f"Line {line} not in diff, no earlier line available",
        )

    return LineValidation(
        requested_line=line,
        actual_line=closest,
        is_valid=True,
        warning=f"Line {line} not in diff, using line {closest}",
    )


def get_patch_line_content(patch: str, target_line: int) -> str:
    """Return the source text of a new-file line from a patch, or "" if absent."""
    new_line: int | None = None
    for line in patch.splitlines():
        if line.startswith("@@"):
            match = _HUNK_RE.match(line)
            if match:
                new_line = int(match.group(1))
            continue
        if line.startswith("---") or line.startswith("+++") or line.startswith("\\"):
            continue
        if line.startswith("-") or new_line is None:
            continue  # removed line, no new-file line number
        if new_line == target_line:
            return line[1:] if line and line[0] in ("+", " ") else line
        new_line += 1
    return ""
