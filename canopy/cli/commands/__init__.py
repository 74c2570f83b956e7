"""CLI commands for Canopy."""

from . import (
    render_cmd,
    diff_cmd,
    classify_cmd,
    config_cmd,
    sessions_cmd,
)

__all__ = [
    "render_cmd",
    "diff_cmd",
    "classify_cmd",
    "config_cmd",
    "sessions_cmd",
]
