"""review command: run one AI review of a pull request."""

from __future__ import annotations

import dataclasses
import json

import click
from rich.console import Console
from rich.markup import escape

from prpal_core.config import get_agent
from prpal_core.gh.publisher import build_review_payload, post_review
from prpal_core.gh.pull_request import GitHubSource
from prpal_core.service import ReviewEngine

console = Console()

_SEVERITY_COLOR = {"critical": "red", "warning": "yellow", "info": "blue"}
_VERDICT_COLOR = {"approve": "green", "request_changes": "red", "comment": "yellow"}


def print_review(state) -> None:
    """Print a terminal ReviewState: summary, issues, and where each issue lands in the diff."""
    if state.status != "completed":
        color = "yellow" if state.status == "cancelled" else "red"
        message = state.error or state.status
        console.print(f"[{color}]Review {state.status}: {message}[/{color}]")
        return

    result = state.result
    review = result.review
    verdict_color = _VERDICT_COLOR.get(review.verdict, "white")
    console.print(
        f"\n[bold]Review of {result.item_id}[/bold]  "
        f"[{verdict_color}]{review.verdict.upper()}[/{verdict_color}]  "
        f"[dim]{result.duration_seconds:.1f}s, model {result.model or 'default'}[/dim]\n"
    )
    console.print(review.summary)

    if review.issues:
        console.print(f"\n[bold]{len(review.issues)} issue(s)[/bold]\n")
        for issue in review.issues:
            color = _SEVERITY_COLOR.get(issue.severity, "white")
            where = f"{issue.file}:{issue.line}" if issue.file and issue.line else issue.file or "general"
            console.print(f"[{color}]{issue.severity.upper()}[/{color}]  [bold cyan]{where}[/bold cyan]")
            console.print(f"  {issue.message}")
            if issue.suggestion:
                console.print(f"  [dim]Suggestion: {issue.suggestion}[/dim]")

    if review.suggestions:
        console.print("\n[bold]Suggestions[/bold]")
        for suggestion in review.suggestions:
            console.print(f"  - {suggestion.message}")

    if review.positives:
        console.print("\n[bold]What's good[/bold]")
        for positive in review.positives:
            console.print(f"  - {positive}")

    annotations = state.inline_annotations or ()
    if annotations:
        console.print("\n[bold]Inline comments[/bold]")
        for index, a in enumerate(annotations):
            mark = "[green]✓[/green]" if a.selected else "[dim]·[/dim]"
            line = f"{a.file}:{a.actual_line}"
            note = f"  [yellow]{a.warning}[/yellow]" if a.warning else ""
            console.print(f"  {mark} [{index}] {line}{note}")
            if a.code:
                console.print(f"        [dim]{escape(a.code.strip())}[/dim]")


def review_to_dict(state) -> dict:
    result = state.result
    return {
        "item_id": state.item_id,
        "status": state.status,
        "error": state.error,
        "duration_seconds": state.duration_seconds,
        "agent_id": result.agent_id if result else None,
        "model": result.model if result else None,
        "review": dataclasses.asdict(result.review) if result else None,
        "annotations": [dataclasses.asdict(a) for a in state.inline_annotations or ()],
    }


@click.command("review")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option("--agent", "agent_id", default=None, help="Review agent id. Defaults to default_agent.")
@click.option("--model", default=None, help="Model override, e.g. anthropic/claude-sonnet-4-20250514.")
@click.option("--post", is_flag=True, help="Post the review to GitHub after it completes.")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt when posting.")
@click.option("--json", "as_json", is_flag=True, help="Print the review as JSON instead of formatted text.")
@click.pass_context
def review_cmd(
    ctx,
    repo: str,
    pr_number: int,
    agent_id: str | None,
    model: str | None,
    post: bool,
    yes: bool,
    as_json: bool,
):
    """Review a single pull request with the external AI tool.

    Fetches the pull request's changed files, runs the review agent, maps the
    reported issues onto the diff, and prints the result. Nothing is posted
    unless --post is given.
    """
    from github import GithubException

    from prpal_cli.auth import require_github_token

    config = ctx.obj["config"]
    if "/" not in repo:
        raise click.BadParameter("expected owner/name", param_hint="--repo")

    agent = get_agent(config, agent_id)
    if agent is None:
        raise click.UsageError(f"Unknown agent: {agent_id!r}")

    token = require_github_token(config)
    source = GitHubSource(token, org=repo.split("/", 1)[0])
    try:
        item = source.get_item(repo, pr_number)
    except GithubException as e:
        raise click.ClickException(f"PR #{pr_number} not found in {repo}: {e}")

    engine = ReviewEngine(source, config)
    engine.sync_items([item])

    with console.status(f"Reviewing {item.id} with {agent.name}..."):
        state = engine.start_review(item.id, agent, model)

    if as_json:
        click.echo(json.dumps(review_to_dict(state), indent=2, default=str))
    else:
        print_review(state)

    if state.status != "completed":
        ctx.exit(1)
    if not post:
        return

    fmt = config.get("review_format") or {}
    _, event, comments = build_review_payload(
        state.result.review,
        annotations=state.inline_annotations or (),
        style=fmt.get("style", "standard"),
        attribution=fmt.get("attribution", "subtle"),
        signature=fmt.get("signature"),
    )
    if not yes and not click.confirm(f"Post review to {item.id} as {event} with {len(comments)} inline comment(s)?"):
        return

    posted = engine.publish(
        item.id,
        sink=lambda it, body, ev, cs: post_review(source.gh, it, body, ev, cs),
    )
    url = getattr(posted, "html_url", None) or item.html_url
    console.print(f"\n[green]Review posted: {event}.[/green] {url}")
