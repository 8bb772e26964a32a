"""watch command: poll an organization for pull requests awaiting review."""

from __future__ import annotations

import logging
import threading

import click
from rich.console import Console

from prpal_cli.commands.review import print_review
from prpal_core.config import MIN_POLL_INTERVAL, get_agent
from prpal_core.gh.pull_request import GitHubSource
from prpal_core.poller import Poller
from prpal_core.service import ReviewEngine

console = Console()
logger = logging.getLogger(__name__)


def _print_item(item, attention: bool) -> None:
    marker = "[bold magenta]●[/bold magenta]" if attention else "[dim]○[/dim]"
    console.print(f"{marker} [bold]{item.id}[/bold]  {item.title}  [dim]by {item.author}[/dim]")


@click.command("watch")
@click.option("--org", default=None, help="GitHub organization to watch. Overrides config file.")
@click.option("--interval", type=int, default=None, help="Seconds between polls. Overrides config file.")
@click.option("--once", is_flag=True, help="Poll a single time and exit.")
@click.option(
    "--auto-review/--no-auto-review",
    "auto_review",
    default=None,
    help="Review newly observed pull requests automatically.",
)
@click.pass_context
def watch_cmd(ctx, org: str | None, interval: int | None, once: bool, auto_review: bool | None):
    """Watch an organization and list pull requests as they appear.

    Pull requests that request your review (directly or through one of your
    teams) are marked with a filled dot.
    """
    from prpal_cli.auth import require_github_token

    config = ctx.obj["config"]
    org = org or config.get("org")
    if not org:
        raise click.UsageError("No organization given. Pass --org or set org in .prpal.yml.")
    if interval is None:
        interval = config["poll_interval_seconds"]
    if interval < MIN_POLL_INTERVAL:
        logger.warning("--interval %d is below the minimum; using %d", interval, MIN_POLL_INTERVAL)
        interval = MIN_POLL_INTERVAL
    if auto_review is None:
        auto_review = bool(config.get("auto_review"))

    token = require_github_token(config)
    source = GitHubSource(token, org)
    username = config.get("username") or source.username
    teams = source.fetch_user_teams()
    engine = ReviewEngine(source, config)
    agent = get_agent(config)

    def on_poll(added, all_items):
        for item in added:
            state = engine.items.get(item.id)
            _print_item(item, attention=bool(state and state.needs_attention))
        if not auto_review:
            return
        for item in added:
            console.print(f"[cyan]Reviewing {item.id}...[/cyan]")
            print_review(engine.start_review(item.id, agent))

    poller = Poller(source, engine, username, teams, show_all=config["show_all_prs"], callback=on_poll)

    if once:
        items = poller.poll_now()
        console.print(f"\n[bold]{len(items)}[/bold] open pull request(s) in {org}.")
        return

    console.print(f"Watching [bold]{org}[/bold] as {username} every {interval}s. Press Ctrl+C to stop.")
    poller.start(interval)
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        poller.stop(timeout=5)
