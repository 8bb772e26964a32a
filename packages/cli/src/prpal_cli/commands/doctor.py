"""doctor command: check the external review tool."""

from __future__ import annotations

import click
from rich.console import Console

from prpal_core.detector import detect_tool, install_instructions

console = Console()


@click.command("doctor")
@click.pass_context
def doctor_cmd(ctx):
    """Check that the external review tool is installed and runnable."""
    config = ctx.obj["config"]
    info = detect_tool(config.get("tool_path"))

    if not info.installed:
        console.print("[red]✗ opencode not found.[/red]")
        console.print(install_instructions())
        ctx.exit(1)

    console.print(f"[green]✓ opencode {info.version or '(unknown version)'}[/green] at {info.path}")
    console.print(f"  Model:   {config.get('model')}")
    console.print(f"  Timeout: {config.get('timeout_seconds')}s")
