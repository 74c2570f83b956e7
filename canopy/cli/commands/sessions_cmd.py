"""Sessions command: inspect and drop persisted render snapshots."""

import typer

from ...config import get_config
from ...storage import open_snapshot_db
from ..app import app, console, get_json_mode
from ..utils import ExitCode, Output


@app.command("sessions")
def sessions_command(
    session: str | None = typer.Argument(
        None, help="Only show snapshots of this session"
    ),
    delete: bool = typer.Option(
        False, "--delete", help="Delete every snapshot of SESSION"
    ),
):
    """
    List saved snapshots, or delete a session's snapshots.

    Example:
        canopy sessions
        canopy sessions alice
        canopy sessions alice --delete
    """
    out = Output(console=console, json_mode=get_json_mode())
    config = get_config()

    with open_snapshot_db(config.db_path_resolved) as db:
        if delete:
            if not session:
                out.fail("--delete requires a session id")
            removed = db.delete_session(session)
            out.success(f"Deleted {removed} snapshots of {session}", deleted=removed)
            raise typer.Exit(out.finish())

        records = db.list_snapshots(session)

    if not records:
        out.fail(
            f"No snapshots for session {session}" if session else "No snapshots saved",
            exit_code=ExitCode.FILE_NOT_FOUND,
        )

    out.table(
        "Snapshots",
        ["Session", "View", "Version", "Tier", "Nodes", "Saved"],
        [
            [
                r.session_id,
                r.view,
                str(r.version),
                r.tier.value,
                str(r.node_count),
                r.saved_at,
            ]
            for r in records
        ],
    )
    raise typer.Exit(out.finish())
