"""The `canopy` typer app, its global flags and logging setup."""

import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

app = typer.Typer(
    name="canopy",
    help="Render, diff and serialize memoized UI trees.",
    no_args_is_help=True,
)

console = Console()

_json_mode = False  # set per invocation by main_callback


def get_json_mode() -> bool:
    """True when the current invocation was given --json."""
    return _json_mode


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure logging for pipeline commands."""
    from ..config import get_config

    level = logging.getLevelName(get_config().defaults.log_level)
    if verbose:
        level = logging.INFO
    if debug:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )
    logging.getLogger("canopy").setLevel(level)


def _version_callback(value: bool) -> None:
    if value:
        from .. import __version__

        print(f"canopy {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Print one JSON document instead of Rich output",
            is_eager=True,
        ),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Print the canopy version and exit",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
):
    """Canopy: tiered memoization and incremental tree rendering.

    Every command accepts the global --json flag for scripting.
    """
    global _json_mode
    _json_mode = json_output


# Command modules register themselves on import
from .commands import (  # noqa: E402, F401
    render_cmd,
    diff_cmd,
    classify_cmd,
    config_cmd,
    sessions_cmd,
)
