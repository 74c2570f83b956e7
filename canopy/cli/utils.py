"""Shared CLI helpers: exit codes, dual-mode output and row builders.

Every command reports through an Output. Humans get Rich markup; with the
global --json flag the same calls accumulate one JSON document that is
printed when the command finishes.

    out = Output(console=console, json_mode=get_json_mode())
    out.success("Rendered /home v3", version=3)
    out.table("Nodes", ["Id", "Tier"], [["page@0", "runtime_static"]])
    raise typer.Exit(out.finish())
"""

from __future__ import annotations

import json
from typing import Any, NoReturn

import typer
from pydantic import BaseModel, ConfigDict, PrivateAttr
from rich.console import Console
from rich.table import Table

from ..core.models import NavigationDiff, RenderTree, Tier


class ExitCode:
    """Process exit codes.

        0 = Success
        1 = Validation error (bad tree file, bad config value)
        3 = File not found
        4 = Render error (fatal producer, cycle, duplicate StableId)
        5 = Serialization error
    """

    SUCCESS = 0
    VALIDATION_ERROR = 1
    FILE_NOT_FOUND = 3
    RENDER_ERROR = 4
    SERIALIZATION_ERROR = 5


class Output(BaseModel):
    """Collects a command's results for either Rich or JSON rendering."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    console: Console
    json_mode: bool = False

    _doc: dict[str, Any] = PrivateAttr(default_factory=dict)
    _code: int = PrivateAttr(default=ExitCode.SUCCESS)

    def model_post_init(self, __context: Any) -> None:
        self._doc = {"status": "success", "warnings": [], "errors": []}

    def success(self, message: str, **fields: Any) -> None:
        """Report progress; fields land in the JSON document."""
        if self.json_mode:
            self._doc.update(fields)
            return
        self.console.print(f"[green]✓[/green] {message}")

    def warning(self, message: str, *, node_id: str | None = None) -> None:
        if self.json_mode:
            entry: dict[str, Any] = {"message": message}
            if node_id:
                entry["node_id"] = node_id
            self._doc["warnings"].append(entry)
            return
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def error(
        self,
        message: str,
        *,
        hint: str | None = None,
        exit_code: int = ExitCode.VALIDATION_ERROR,
    ) -> None:
        """Record a failure; the exit code of finish() becomes exit_code."""
        self._code = exit_code
        self._doc["status"] = "error"
        if self.json_mode:
            entry: dict[str, Any] = {"message": message}
            if hint:
                entry["hint"] = hint
            self._doc["errors"].append(entry)
            return
        self.console.print(f"[red]✗[/red] {message}")
        if hint:
            self.console.print(f"  [dim]{hint}[/dim]")

    def fail(
        self,
        message: str,
        *,
        hint: str | None = None,
        exit_code: int = ExitCode.VALIDATION_ERROR,
    ) -> NoReturn:
        """error() then exit the command."""
        self.error(message, hint=hint, exit_code=exit_code)
        raise typer.Exit(self.finish())

    def text(self, message: str) -> None:
        if not self.json_mode:
            self.console.print(message)

    def table(
        self,
        title: str,
        columns: list[str],
        rows: list[list[str]],
        *,
        data_key: str | None = None,
    ) -> None:
        """Print a table, or store its rows as dicts under data_key.

        data_key defaults to the title in snake_case.
        """
        if self.json_mode:
            key = data_key or title.lower().replace(" ", "_")
            self._doc[key] = [dict(zip(columns, row)) for row in rows]
            return
        table = Table(title=title, show_header=True, header_style="bold")
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        self.console.print(table)

    def set_data(self, key: str, value: Any) -> None:
        self._doc[key] = value

    def finish(self) -> int:
        """Print the JSON document (JSON mode) and return the exit code."""
        if self.json_mode:
            self._doc["exit_code"] = self._code
            print(json.dumps(self._doc, indent=2, default=str))
        return self._code


def tier_indicator(tier: Tier) -> str:
    """Tier name with Rich colour markup."""
    colours = {
        Tier.BUILD_STATIC: "green",
        Tier.RUNTIME_STATIC: "yellow",
        Tier.DYNAMIC: "red",
    }
    colour = colours.get(tier)
    return f"[{colour}]{tier.value}[/{colour}]" if colour else tier.value


def node_rows(tree: RenderTree, *, markup: bool = True) -> list[list[str]]:
    """One row per node: id, kind, tier, status."""
    rows = []
    for node in tree.walk():
        if node.error is not None:
            status = f"error: {node.error.kind}"
        elif node.is_placeholder:
            status = f"bundle {node.activation.bundle_locator}"
        else:
            status = "ok"
        tier = tier_indicator(node.tier) if markup else node.tier.value
        rows.append([node.id, node.kind.value, tier, status])
    return rows


def diff_rows(navigation: NavigationDiff) -> list[list[str]]:
    """One row per diff entry: change, id, detail."""
    rows = [["removed", node_id, ""] for node_id in navigation.removed]
    rows.extend(
        ["added", item.node.id, f"under {item.parent_id or '(root)'} at {item.index}"]
        for item in navigation.added
    )
    rows.extend(
        ["updated", item.id, "error" if item.error is not None else ""]
        for item in navigation.updated
    )
    return rows
