"""Shipyard CLI: Typer-based command-line interface.

Provides the ``shipyard`` command with subcommands for running a pipeline,
showing and listing runs, and cancelling an in-flight run.

All output uses Rich for formatted terminal display.
"""
