"""Render command: YAML tree -> NDJSON payload + activation manifest."""

import asyncio
import time
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
from ...core.models import RenderTree, RouteDescriptor
from ...render import (
    NodeDescriptor,
    RenderExecutor,
    encode_manifest,
    encode_payload,
    load_tree_file,
    serialize,
)
from ..app import app, console, get_json_mode, setup_logging
from ..utils import ExitCode, Output, node_rows


async def render_file(
    route: RouteDescriptor, descriptor: NodeDescriptor, config: CanopyConfig
) -> RenderTree:
    """Render one tree with a throwaway cache store."""
    async with CacheStore(config=config) as store:
        executor = RenderExecutor(store, config=config)
        return await executor.render_route(route, descriptor)


def load_or_fail(path: Path, out: Output) -> tuple[RouteDescriptor, NodeDescriptor]:
    """Load a tree file, reporting problems through out and exiting."""
    if not path.exists():
        out.fail(f"File not found: {path}", exit_code=ExitCode.FILE_NOT_FOUND)
    try:
        return load_tree_file(path)
    except DescriptorError as e:
        out.fail(str(e), exit_code=ExitCode.VALIDATION_ERROR)


@app.command("render")
def render_command(
    tree_file: Path = typer.Argument(..., help="YAML tree file"),
    output: Path | None = typer.Option(
        None, "--out", "-o", help="Write the NDJSON payload here"
    ),
    manifest_path: Path | None = typer.Option(
        None,
        "--manifest",
        "-m",
        help="Write the activation manifest here (defaults to <out>.manifest.json)",
    ),
    forced_dynamic: bool = typer.Option(
        False, "--forced-dynamic", help="Render as dynamic regardless of the route"
    ),
    session: str | None = typer.Option(
        None, "--session", help="Save the rendered tree as this session's snapshot"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed logs"),
    debug: bool = typer.Option(
        False, "--debug", help="Show debug-level logs (very verbose)"
    ),
):
    """
    Render a YAML tree and write its payload.

    Example:
        canopy render page.yaml
        canopy render page.yaml --out page.ndjson
        canopy render page.yaml --session alice
    """
    setup_logging(verbose=verbose, debug=debug)
    out = Output(console=console, json_mode=get_json_mode())
    config = get_config()

    route, descriptor = load_or_fail(tree_file, out)
    if forced_dynamic:
        route = route.model_copy(update={"forced_dynamic": True})

    start = time.time()
    try:
        tree = asyncio.run(render_file(route, descriptor, config))
        payload, manifest = serialize(tree)
    except DescriptorError as e:
        out.fail(str(e), exit_code=ExitCode.VALIDATION_ERROR)
    except SerializationError as e:
        out.fail(str(e), exit_code=ExitCode.SERIALIZATION_ERROR)
    except (ProducerFailure, CacheCoherenceViolation, DiffIdentityConflict) as e:
        out.fail(str(e), exit_code=ExitCode.RENDER_ERROR)
    elapsed = time.time() - start

    out.success(
        f"Rendered {route.path} v{tree.version} ({tree.tier.value}): "
        f"{tree.node_count} nodes in {elapsed:.2f}s",
        path=route.path,
        version=tree.version,
        tier=tree.tier.value,
        node_count=tree.node_count,
        placeholders=len(manifest),
    )
    out.table(
        "Nodes",
        ["Id", "Kind", "Tier", "Status"],
        node_rows(tree, markup=not out.json_mode),
    )
    for node in tree.errors():
        out.warning(f"{node.id}: {node.error.message}", node_id=node.id)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(encode_payload(payload))
        manifest_out = manifest_path or output.with_suffix(".manifest.json")
        manifest_out.write_bytes(encode_manifest(manifest))
        out.success(
            f"Wrote {output} and {manifest_out}",
            payload_file=str(output),
            manifest_file=str(manifest_out),
        )
    elif manifest_path is not None:
        manifest_path.write_bytes(encode_manifest(manifest))

    if session:
        from ...storage import open_snapshot_db

        with open_snapshot_db(config.db_path_resolved) as db:
            db.save_snapshot(session, route.path, tree, manifest)
        out.success(f"Saved snapshot for session {session}", session=session)

    raise typer.Exit(out.finish())
