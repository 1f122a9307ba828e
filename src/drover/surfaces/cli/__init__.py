"""Typer CLI surface."""
