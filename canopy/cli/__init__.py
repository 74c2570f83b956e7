"""Command-line interface for Canopy."""
