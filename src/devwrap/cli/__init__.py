"""Command-line interface for devwrap.

Provides commands for running apps behind the proxy, listing and removing
routes, diagnostics, and managing the self-managed proxy.
"""

from .main import cli, main

__all__ = ["cli", "main"]
