"""Command-line interface for stagerun (Typer + Rich)."""
