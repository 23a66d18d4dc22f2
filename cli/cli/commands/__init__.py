"""Subcommands registered on the main Typer app."""
