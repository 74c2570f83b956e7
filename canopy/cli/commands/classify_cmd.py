"""Classify command: show the caching tier a route gets."""

from pathlib import Path

import typer

from ...core.models import RouteDescriptor
from ...render import classify
from ..app import app, console, get_json_mode
from ..utils import Output, tier_indicator
from .render_cmd import load_or_fail


@app.command("classify")
def classify_command(
    tree_file: Path | None = typer.Argument(
        None, help="Read the route from this tree file instead of the flags"
    ),
    path: str = typer.Option("/", "--path", help="Route path"),
    enumerable: bool = typer.Option(
        False, "--enumerable", help="All route parameters are known ahead of time"
    ),
    ambient: bool = typer.Option(
        False, "--ambient", help="Producers read per-request data (user, cookies)"
    ),
    forced_dynamic: bool = typer.Option(
        False, "--forced-dynamic", help="Route is explicitly forced dynamic"
    ),
):
    """
    Classify a route into build_static, runtime_static or dynamic.

    Example:
        canopy classify --enumerable
        canopy classify --ambient --path /account
        canopy classify page.yaml
    """
    out = Output(console=console, json_mode=get_json_mode())

    if tree_file is not None:
        route, _ = load_or_fail(tree_file, out)
    else:
        route = RouteDescriptor(
            path=path,
            enumerable_params=enumerable,
            reads_ambient_request_data=ambient,
            forced_dynamic=forced_dynamic,
        )

    tier = classify(route)
    out.success(
        f"{route.path} -> {tier_indicator(tier)}",
        path=route.path,
        tier=tier.value,
    )
    raise typer.Exit(out.finish())
