"""Diff command: render two YAML trees and show the navigation diff."""

import asyncio
from pathlib import Path

import typer

from ...cache import CacheStore
from ...config import CanopyConfig, get_config
from ...core.errors import (
    CacheCoherenceViolation,
    DescriptorError,
    DiffIdentityConflict,
    ProducerFailure,
    SerializationError,
)
from ...core.models import NavigationDiff, RouteDescriptor
from ...render import NodeDescriptor, RenderExecutor, diff, encode_diff, serialize_diff
from ..app import app, console, get_json_mode, setup_logging
from ..utils import ExitCode, Output, diff_rows
from .render_cmd import load_or_fail


async def diff_files(
    old: tuple[RouteDescriptor, NodeDescriptor],
    new: tuple[RouteDescriptor, NodeDescriptor],
    config: CanopyConfig,
) -> NavigationDiff:
    """Render both trees with one executor and store, then diff them."""
    async with CacheStore(config=config) as store:
        executor = RenderExecutor(store, config=config)
        previous = await executor.render_route(*old)
        current = await executor.render_route(*new, min_version=previous.version)
        return diff(previous, current)


@app.command("diff")
def diff_command(
    old_file: Path = typer.Argument(..., help="YAML tree the client holds"),
    new_file: Path = typer.Argument(..., help="YAML tree to navigate to"),
    output: Path | None = typer.Option(
        None, "--out", "-o", help="Write the encoded diff here"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed logs"),
    debug: bool = typer.Option(
        False, "--debug", help="Show debug-level logs (very verbose)"
    ),
):
    """
    Show the minimal diff between two rendered trees.

    Example:
        canopy diff page.v1.yaml page.v2.yaml
        canopy --json diff page.v1.yaml page.v2.yaml --out patch.json
    """
    setup_logging(verbose=verbose, debug=debug)
    out = Output(console=console, json_mode=get_json_mode())
    config = get_config()

    old = load_or_fail(old_file, out)
    new = load_or_fail(new_file, out)

    try:
        navigation = asyncio.run(diff_files(old, new, config))
        diff_payload, manifest = serialize_diff(navigation)
    except DescriptorError as e:
        out.fail(str(e), exit_code=ExitCode.VALIDATION_ERROR)
    except SerializationError as e:
        out.fail(str(e), exit_code=ExitCode.SERIALIZATION_ERROR)
    except (ProducerFailure, CacheCoherenceViolation, DiffIdentityConflict) as e:
        out.fail(str(e), exit_code=ExitCode.RENDER_ERROR)

    if navigation.is_empty:
        out.success("Trees are identical", size=0)
    else:
        out.success(
            f"{len(navigation.removed)} removed, {len(navigation.added)} added, "
            f"{len(navigation.updated)} updated",
            size=navigation.size,
            removed=len(navigation.removed),
            added=len(navigation.added),
            updated=len(navigation.updated),
        )
        out.table("Changes", ["Change", "Id", "Detail"], diff_rows(navigation))

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(encode_diff(diff_payload))
        out.success(
            f"Wrote {output} ({len(manifest)} activations)", diff_file=str(output)
        )

    raise typer.Exit(out.finish())
