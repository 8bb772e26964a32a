"""Locate the external review tool.

Resolution order (stops at first success):
  1. An explicit path from config (``tool_path``). When set, nothing else is tried.
  2. ``opencode`` on PATH.
  3. The locations the official installers use.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from prpal_core.errors import INSTALL_COMMAND, TOOL_NAME, not_installed_error

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"(\d+\.\d+\.\d+)")
_VERSION_TIMEOUT = 10

COMMON_PATHS = [
    Path.home() / ".opencode" / "bin" / TOOL_NAME,
    Path.home() / ".local" / "bin" / TOOL_NAME,
    Path("/usr/local/bin") / TOOL_NAME,
    Path("/opt/homebrew/bin") / TOOL_NAME,
]


@dataclass(frozen=True)
class ToolInfo:
    installed: bool
    version: str | None = None
    path: str | None = None


def parse_version(output: str) -> str | None:
    match = _VERSION_RE.search(output)
    return match.group(1) if match else None


def _probe(command: str) -> ToolInfo:
    try:
        result = subprocess.run(
            [command, "--version"],
            capture_output=True,
            text=True,
            timeout=_VERSION_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Probe of %s failed: %s", command, e)
        return ToolInfo(installed=False)

    if result.returncode != 0:
        return ToolInfo(installed=False)

    path = command if Path(command).is_absolute() else shutil.which(command)
    version = parse_version(result.stdout)
    logger.debug("%s detected at %s (version %s)", TOOL_NAME, path, version)
    return ToolInfo(installed=True, version=version, path=path or command)


def detect_tool(custom_path: str | None = None) -> ToolInfo:
    if custom_path:
        return _probe(str(Path(custom_path).expanduser()))

    on_path = shutil.which(TOOL_NAME)
    if on_path:
        info = _probe(on_path)
        if info.installed:
            return info

    for candidate in COMMON_PATHS:
        if candidate.exists():
            info = _probe(str(candidate))
            if info.installed:
                return info

    logger.warning("%s not found on PATH or in common install locations", TOOL_NAME)
    return ToolInfo(installed=False)


def resolve_tool_path(custom_path: str | None = None) -> str:
    """Return an executable path for the tool, raising NOT_INSTALLED when absent."""
    info = detect_tool(custom_path)
    if not info.installed or not info.path:
        raise not_installed_error(custom_path)
    return info.path


def install_instructions() -> str:
    return f"Install {TOOL_NAME}: {INSTALL_COMMAND}"
