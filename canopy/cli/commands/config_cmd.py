"""Config command: show, set and reset the persisted canopy configuration."""

import typer
from rich.table import Table

from ..app import app, console
from ... import config as config_module
from ...config import coerce_value, get_config, reset_config


SECTION_TITLES = {
    "cache": "Cache (runtime-static defaults)",
    "render": "Render",
    "defaults": "Defaults",
}

VALID_KEYS = {
    "cache.revalidate_after",
    "cache.stale_mode",
    "render.max_concurrency",
    "render.producer_timeout",
    "defaults.db_path",
    "defaults.log_level",
}


def _print_keys() -> None:
    console.print("Available keys:")
    for name in sorted(VALID_KEYS):
        console.print(f"  {name}")


@app.command("config")
def config_command(
    action: str = typer.Argument(..., help="Action: show, set, reset"),
    key: str | None = typer.Argument(
        None, help="Dotted key, e.g. cache.revalidate_after"
    ),
    value: str | None = typer.Argument(None, help="New value (set only)"),
):
    """View or change the canopy configuration file.

    Examples:
        canopy config show
        canopy config set cache.revalidate_after 30
        canopy config set render.producer_timeout none
        canopy config reset
    """
    if action == "show":
        _show()
    elif action == "set":
        if not key or value is None:
            console.print("[red]Usage:[/red] canopy config set <key> <value>")
            _print_keys()
            raise typer.Exit(1)
        _set(key, value)
    elif action == "reset":
        _reset()
    else:
        console.print(f"[red]Unknown action:[/red] {action} (expected show, set or reset)")
        raise typer.Exit(1)


def _show() -> None:
    """Print the resolved configuration (file + env + defaults)."""
    resolved = get_config().to_dict()

    console.print()
    console.print("[bold]Canopy Configuration[/bold]")
    for section, title in SECTION_TITLES.items():
        table = Table(title=title, title_justify="left", show_header=False, box=None)
        table.add_column("key", style="cyan")
        table.add_column("value")
        for name, current in resolved[section].items():
            table.add_row(name, "[dim](none)[/dim]" if current is None else str(current))
        console.print()
        console.print(table)

    config_file = config_module.CONFIG_FILE
    state = "" if config_file.exists() else " [dim](not created yet)[/dim]"
    console.print()
    console.print(f"Config file: {config_file}{state}")


def _set(key: str, value: str) -> None:
    if key not in VALID_KEYS:
        console.print(f"[red]Unknown key:[/red] {key}")
        _print_keys()
        raise typer.Exit(1)

    section, name = key.split(".", 1)
    try:
        coerced = coerce_value(name, value)
    except ValueError as e:
        console.print(f"[red]Invalid value for {key}:[/red] {e}")
        raise typer.Exit(1)

    config = get_config()
    setattr(getattr(config, section), name, coerced)
    config.save()
    reset_config()

    console.print(f"[green]✓[/green] {key} = {coerced}")
    console.print(f"  Saved to {config_module.CONFIG_FILE}")


def _reset() -> None:
    config_file = config_module.CONFIG_FILE
    if not config_file.exists():
        console.print("Nothing to reset: no config file")
        return
    config_file.unlink()
    reset_config()
    console.print(f"[green]✓[/green] Removed {config_file}; defaults restored")
