"""GitHub token resolution.

Resolution order (stops at first success):
  1. GITHUB_TOKEN environment variable, or ``github_token`` in the config
  2. `gh auth token` (GitHub CLI session, works after `gh auth login`)
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Optional

import click

logger = logging.getLogger(__name__)


def resolve_github_token(config: Optional[dict] = None) -> str | None:
    """Return a GitHub token, or None when no source has one. Never raises."""
    token = os.environ.get("GITHUB_TOKEN") or (config or {}).get("github_token")
    if token:
        return token

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None

    if result.returncode == 0 and result.stdout.strip():
        logger.debug("Resolved GitHub token via gh CLI session.")
        return result.stdout.strip()
    return None


def require_github_token(config: dict) -> str:
    token = resolve_github_token(config)
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    return token
