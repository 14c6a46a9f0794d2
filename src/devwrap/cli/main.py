"""Main CLI entry point for devwrap.

Defines the CLI group and registers all subcommands.

Commands:
    run     - Run a command behind the proxy under <name>.localhost
    ls      - List tracked apps
    rm      - Remove an app route
    doctor  - Environment and health diagnostics
    proxy   - Proxy lifecycle (start, stop, status, trust, logs)

Subcommand help:
    devwrap COMMAND -h         Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli", "main"]

import sys

import click

from devwrap import __version__
from devwrap.config import RuntimePaths, load_config
from devwrap.utils.logging.log_config import configure_logging

from .commands.apps import ls, rm
from .commands.doctor import doctor
from .commands.proxy import proxy
from .commands.run import run


class ReorderedGroup(click.Group):
    """Group that adds usage examples after the commands section."""

    def format_epilog(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        formatter.write(
            """
Examples:
  devwrap run --name myapp -- pnpm dev
  devwrap run --name api -- uvicorn app:app --port @PORT
  devwrap run --name web --host web.dev.test -- pnpm dev
  devwrap proxy start --privileged

Use @PORT in command arguments to inject the allocated app port.
"""
        )


@click.group(
    cls=ReorderedGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", is_flag=True, help="Show version")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs on stderr")
@click.pass_context
def cli(ctx: click.Context, version: bool, verbose: bool) -> None:
    """devwrap: local dev reverse proxy helper for Caddy."""
    if version:
        click.echo(f"devwrap {__version__}")
        sys.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    config = load_config()
    configure_logging(
        RuntimePaths.from_config(config).event_log,
        file_level=config.log_level,
        verbose=verbose,
    )
    ctx.obj = config


# Register commands
cli.add_command(doctor)
cli.add_command(ls)
cli.add_command(proxy)
cli.add_command(rm)
cli.add_command(run)


def main() -> None:
    """CLI entry point."""
    cli()
