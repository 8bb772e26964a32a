"""CLI entry point for prpal.

Commands:
  review  run one AI review of a pull request, optionally posting it
  watch   poll an organization for open pull requests awaiting review
  doctor  check that the external review tool is installed
  skills  list built-in and custom review skills
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prpal_cli.commands.doctor import doctor_cmd
from prpal_cli.commands.review import review_cmd
from prpal_cli.commands.skills import skills_cmd
from prpal_cli.commands.watch import watch_cmd

console = Console()

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=_LOG_LEVELS.get(str(level).lower(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("prpal"),
    prog_name="prpal",
)
@click.option(
    "--config",
    "config_path",
    default=".prpal.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRPAL_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Track open pull requests and prepare AI reviews for you to approve."""
    from prpal_core.config import load_config

    ctx.ensure_object(dict)

    configure_logging("debug" if verbose else "info")
    config = load_config(config_path)
    if not verbose:
        logging.getLogger().setLevel(_LOG_LEVELS.get(str(config.get("log_level")).lower(), logging.INFO))

    ctx.obj["config"] = config


main.add_command(review_cmd)
main.add_command(watch_cmd)
main.add_command(doctor_cmd)
main.add_command(skills_cmd)
