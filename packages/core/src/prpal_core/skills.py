"""Review skills and project memories.

A *skill* is a topical add-on appended to the agent prompt ("pay special
attention to security..."). Built-in skills ship here; teams can add their own
as markdown files in ``skills_folder``. A *memory* is persistent project
context (architecture notes, conventions) loaded from ``memories_folder`` and
appended to every prompt.

Both folders hold ``*.md`` files with optional YAML frontmatter:

    ---
    name: Django ORM
    description: Query patterns we care about
    ---
    - Flag querysets evaluated inside loops
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

CUSTOM_PREFIX = "custom:"

_FRONTMATTER_RE = re.compile(r"^---\n([\s\S]*?)\n---\n*")


@dataclass(frozen=True)
class Skill:
    id: str
    name: str
    description: str
    prompt_addition: str


@dataclass(frozen=True)
class CustomSkill:
    id: str
    name: str
    description: str
    content: str
    file_path: str


@dataclass(frozen=True)
class Memory:
    id: str
    name: str
    content: str
    file_path: str


def _focus(title: str, points: list[str]) -> str:
    bullets = "\n".join(f"- {p}" for p in points)
    return f"## {title} Focus\nPay special attention to:\n{bullets}"


BUILTIN_SKILLS: dict[str, Skill] = {
    s.id: s
    for s in [
        Skill(
            "security",
            "Security",
            "Focus on security vulnerabilities and best practices",
            _focus(
                "Security",
                [
                    "SQL injection, XSS, CSRF vulnerabilities",
                    "Authentication and authorization issues",
                    "Sensitive data exposure (API keys, passwords, tokens)",
                    "Input validation and sanitization",
                    "Dependency vulnerabilities",
                    "Rate limiting and DoS protection",
                ],
            ),
        ),
        Skill(
            "performance",
            "Performance",
            "Identify performance bottlenecks and optimization opportunities",
            _focus(
                "Performance",
                [
                    "N+1 query problems",
                    "Memory leaks and resource cleanup",
                    "Inefficient algorithms where a linear one is available",
                    "Missing caching opportunities",
                    "Unnecessary computations in loops",
                ],
            ),
        ),
        Skill(
            "code-quality",
            "Code Quality",
            "Ensure clean, maintainable, and readable code",
            _focus(
                "Code Quality",
                [
                    "DRY violations",
                    "Function and class complexity",
                    "Naming conventions",
                    "Magic numbers and hardcoded values",
                    "Dead code and unused imports",
                ],
            ),
        ),
        Skill(
            "testing",
            "Testing",
            "Review test coverage and quality",
            _focus(
                "Testing",
                [
                    "Missing test cases for new functionality",
                    "Edge cases and error paths left untested",
                    "Brittle assertions and over-mocking",
                    "Flaky timing or ordering dependencies",
                ],
            ),
        ),
        Skill(
            "documentation",
            "Documentation",
            "Ensure proper documentation and comments",
            _focus(
                "Documentation",
                [
                    "Public APIs without docstrings",
                    "Outdated comments that contradict the code",
                    "README and changelog updates for user-facing changes",
                ],
            ),
        ),
        Skill(
            "accessibility",
            "Accessibility",
            "Check for accessibility (a11y) issues",
            _focus(
                "Accessibility",
                [
                    "Missing alt text and ARIA labels",
                    "Keyboard navigation and focus handling",
                    "Colour contrast",
                ],
            ),
        ),
        Skill(
            "typescript",
            "TypeScript",
            "TypeScript best practices and type safety",
            _focus("TypeScript", ["Use of any", "Unsafe casts", "Missing null checks on optional values"]),
        ),
        Skill(
            "react",
            "React",
            "React patterns and best practices",
            _focus("React", ["Hook dependency arrays", "Unnecessary re-renders", "Keys in lists"]),
        ),
        Skill(
            "nodejs",
            "Node.js",
            "Node.js and server-side best practices",
            _focus("Node.js", ["Unhandled promise rejections", "Blocking the event loop", "Stream backpressure"]),
        ),
        Skill(
            "database",
            "Database",
            "Database queries and schema design",
            _focus("Database", ["Missing indexes", "Unsafe migrations", "Transactions around multi-step writes"]),
        ),
        Skill(
            "api-design",
            "API Design",
            "RESTful API design and best practices",
            _focus("API Design", ["Breaking changes", "Status codes and error bodies", "Pagination and versioning"]),
        ),
        Skill(
            "error-handling",
            "Error Handling",
            "Proper error handling and recovery",
            _focus(
                "Error Handling",
                ["Swallowed exceptions", "Missing cleanup on failure paths", "Errors without actionable context"],
            ),
        ),
    ]
}


def build_skills_prompt(skill_ids: list[str]) -> str:
    skills = [BUILTIN_SKILLS[s] for s in skill_ids if s in BUILTIN_SKILLS]
    if not skills:
        return ""
    return "\n\n" + "\n\n".join(s.prompt_addition.strip() for s in skills)


def split_frontmatter(content: str) -> tuple[dict, str]:
    """Return ``(frontmatter, body)``. Malformed YAML yields an empty mapping."""
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return {}, content
    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        logger.warning("Ignoring malformed frontmatter: %s", e)
        meta = {}
    if not isinstance(meta, dict):
        meta = {}
    return meta, content[match.end() :]


def _slug(stem: str) -> str:
    return re.sub(r"\s+", "-", stem.lower())


def _display_name(stem: str) -> str:
    return re.sub(r"[-_]", " ", stem).title()


def _expand(folder: str | None) -> Path | None:
    return Path(folder).expanduser() if folder else None


class SkillLibrary:
    """Custom skills and memories loaded from folders on disk."""

    def __init__(self, skills_folder: str | None = None, memories_folder: str | None = None):
        self.skills_folder = _expand(skills_folder)
        self.memories_folder = _expand(memories_folder)
        self.custom_skills: list[CustomSkill] = []
        self.memories: list[Memory] = []
        self.reload()

    def reload(self) -> None:
        self.custom_skills = [self._to_skill(p, meta, body) for p, meta, body in self._read(self.skills_folder)]
        self.memories = [self._to_memory(p, meta, body) for p, meta, body in self._read(self.memories_folder)]
        if self.skills_folder:
            logger.info("Loaded %d custom skill(s) from %s", len(self.custom_skills), self.skills_folder)
        if self.memories_folder:
            logger.info("Loaded %d memory file(s) from %s", len(self.memories), self.memories_folder)

    @staticmethod
    def _read(folder: Path | None) -> list[tuple[Path, dict, str]]:
        if folder is None:
            return []
        if not folder.is_dir():
            logger.warning("Folder not found: %s", folder)
            return []
        entries = []
        for path in sorted(folder.glob("*.md")):
            try:
                meta, body = split_frontmatter(path.read_text(encoding="utf-8"))
            except OSError as e:
                logger.warning("Could not read %s: %s", path, e)
                continue
            entries.append((path, meta, body))
        return entries

    @staticmethod
    def _to_skill(path: Path, meta: dict, body: str) -> CustomSkill:
        return CustomSkill(
            id=_slug(path.stem),
            name=str(meta.get("name") or meta.get("title") or _display_name(path.stem)),
            description=str(meta.get("description") or f"Custom skill: {path.stem}"),
            content=body.strip(),
            file_path=str(path),
        )

    @staticmethod
    def _to_memory(path: Path, meta: dict, body: str) -> Memory:
        return Memory(
            id=_slug(path.stem),
            name=str(meta.get("name") or meta.get("title") or _display_name(path.stem)),
            content=body.strip(),
            file_path=str(path),
        )

    def get_custom_skill(self, skill_id: str) -> CustomSkill | None:
        return next((s for s in self.custom_skills if s.id == skill_id), None)

    def custom_skills_prompt(self, skill_ids: list[str]) -> str:
        skills = [s for s in (self.get_custom_skill(i) for i in skill_ids) if s is not None]
        if not skills:
            return ""
        return "\n\n## Custom Review Focus\n\n" + "\n\n".join(s.content for s in skills)

    def memories_prompt(self) -> str:
        if not self.memories:
            return ""
        return "\n\n## Project Context & Memories\n\n" + "\n\n".join(m.content for m in self.memories)
