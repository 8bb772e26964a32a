"""skills command: list the review skills agents can use."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prpal_core.skills import BUILTIN_SKILLS, CUSTOM_PREFIX, SkillLibrary

console = Console()


@click.command("skills")
@click.pass_context
def skills_cmd(ctx):
    """List built-in skills and the custom skills found in skills_folder.

    Reference a skill from an agent's ``skills:`` list by its id; custom
    skills are referenced as ``custom:<id>``.
    """
    config = ctx.obj["config"]
    library = SkillLibrary(config.get("skills_folder"), config.get("memories_folder"))

    table = Table(title="Review Skills", show_header=True, header_style="bold cyan")
    table.add_column("Id", style="bold")
    table.add_column("Name")
    table.add_column("Description")
    table.add_column("Source", style="dim")

    for skill in BUILTIN_SKILLS.values():
        table.add_row(skill.id, skill.name, skill.description, "built-in")
    for skill in library.custom_skills:
        table.add_row(f"{CUSTOM_PREFIX}{skill.id}", skill.name, skill.description, skill.file_path)

    console.print(table)
    if library.memories:
        console.print(f"\n{len(library.memories)} memory file(s) loaded from {library.memories_folder}.")
