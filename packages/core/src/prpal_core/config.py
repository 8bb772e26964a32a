import copy
import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from prpal_core.models import ReviewAgent
from prpal_core.prompts import DEFAULT_REVIEW_PROMPT

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL = 30

DEFAULT_CONFIG: dict = {
    "org": None,
    "username": None,
    "tool_path": None,  # None = auto-detect opencode on PATH / common locations
    "model": "anthropic/claude-sonnet-4-20250514",
    "timeout_seconds": 120,
    "kill_grace_seconds": 5.0,
    "poll_interval_seconds": 300,
    "show_all_prs": True,
    "auto_review": False,
    "skills_folder": None,
    "memories_folder": None,
    "default_agent": "default",
    "agents": [],
    "review_format": {"style": "standard", "attribution": "subtle", "signature": None},
    "log_level": "info",
}

DEFAULT_AGENT = ReviewAgent(
    id="default",
    name="Default Reviewer",
    prompt=DEFAULT_REVIEW_PROMPT,
    description="General-purpose code review",
)


def load_config(config_path: str = ".prpal.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prpal.yml in the current directory
      3. CLI argument overrides
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if "review_format" in file_config:
            config["review_format"].update(file_config.pop("review_format") or {})
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    interval = config.get("poll_interval_seconds")
    if interval is not None and interval < MIN_POLL_INTERVAL:
        logger.warning(
            "poll_interval_seconds=%s is below the minimum; using %d",
            interval,
            MIN_POLL_INTERVAL,
        )
        config["poll_interval_seconds"] = MIN_POLL_INTERVAL

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN") or config.get("github_token")

    return config


def _to_agent(entry: dict) -> ReviewAgent:
    agent_id = str(entry["id"])
    return ReviewAgent(
        id=agent_id,
        name=str(entry.get("name") or agent_id),
        prompt=entry.get("prompt") or DEFAULT_REVIEW_PROMPT,
        model=entry.get("model"),
        skills=tuple(entry.get("skills") or ()),
        description=entry.get("description") or "",
    )


def load_agents(config: dict) -> list[ReviewAgent]:
    """The built-in ``default`` agent followed by every agent under ``agents:``.

    A configured agent with id ``default`` replaces the built-in one.
    """
    agents = {DEFAULT_AGENT.id: DEFAULT_AGENT}
    for entry in config.get("agents") or []:
        if not isinstance(entry, dict) or not entry.get("id"):
            logger.warning("Skipping agent entry without an id: %r", entry)
            continue
        agent = _to_agent(entry)
        agents[agent.id] = agent
    return list(agents.values())


def get_agent(config: dict, agent_id: Optional[str] = None) -> Optional[ReviewAgent]:
    wanted = agent_id or config.get("default_agent") or DEFAULT_AGENT.id
    return next((a for a in load_agents(config) if a.id == wanted), None)
