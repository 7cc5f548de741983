"""Rollwright CLI: Typer-based command-line interface.

Provides the ``rollwright`` command with subcommands for deploying an
artifact, listing and registering targets, inspecting rollout history,
checking infrastructure drift, and running a simulated demo.

All output uses Rich for formatted terminal display.
"""
