"""Review prompt construction.

From the engine's point of view the prompt is opaque: agent prompt, skill
sections, project memories, then the pull request itself. Only the output
format instructions matter to the rest of the code, because the extractor
expects exactly that JSON shape back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prpal_core.skills import CUSTOM_PREFIX, build_skills_prompt

if TYPE_CHECKING:
    from prpal_core.models import ReviewableItem, ReviewAgent
    from prpal_core.skills import SkillLibrary

DEFAULT_REVIEW_PROMPT = """You are an expert code reviewer. When reviewing a pull request, analyze:

## Code Quality
- Readability, naming, duplication
- Function length and complexity

## Potential Bugs
- Edge cases and error handling
- Null/None checks
- Race conditions and async issues
- Off-by-one errors

## Security
- Input validation and sanitization
- Authentication/authorization issues
- Injection risks and sensitive data exposure

## Performance
- Unnecessary computations, N+1 queries, inefficient algorithms

## Output Format
Provide your review as JSON with this structure:
{
  "summary": "Brief overview of changes (2-3 sentences)",
  "verdict": "approve" | "request_changes" | "comment",
  "issues": [
    {
      "severity": "critical" | "warning" | "info",
      "file": "path/to/file.py",
      "line": 42,
      "message": "Description of the issue",
      "suggestion": "How to fix (optional)"
    }
  ],
  "suggestions": [
    {
      "message": "Constructive improvement suggestion"
    }
  ],
  "positives": ["Things done well (optional)"]
}

"line" must be a line number in the NEW version of the file.
Be constructive, specific, and provide code examples where helpful."""


def build_agent_skills_prompt(agent: ReviewAgent | None, library: SkillLibrary | None = None) -> str:
    if agent is None or not agent.skills:
        return ""

    builtin_ids: list[str] = []
    custom_ids: list[str] = []
    for skill_id in agent.skills:
        if skill_id.startswith(CUSTOM_PREFIX):
            custom_ids.append(skill_id[len(CUSTOM_PREFIX) :])
        else:
            builtin_ids.append(skill_id)

    prompt = build_skills_prompt(builtin_ids)
    if library is not None:
        prompt += library.custom_skills_prompt(custom_ids)
    return prompt


def build_review_prompt(
    item: ReviewableItem,
    diff: str,
    agent: ReviewAgent | None = None,
    library: SkillLibrary | None = None,
) -> str:
    base = agent.prompt if agent is not None and agent.prompt else DEFAULT_REVIEW_PROMPT
    skills_section = build_agent_skills_prompt(agent, library)
    memories_section = library.memories_prompt() if library is not None else ""

    return f"""{base}{skills_section}{memories_section}

---

Review this pull request:

## PR #{item.number}: {item.title}
**Author:** {item.author}
**Repository:** {item.full_name}
**Base:** {item.base_ref} <- {item.head_ref}

### Description
{item.body or 'No description provided'}

### Changes
- Files changed: {item.changed_files}
- Additions: +{item.additions}
- Deletions: -{item.deletions}

### Diff
```diff
{diff}
```

Provide your review as JSON with the structure specified above."""
