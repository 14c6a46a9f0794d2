"""CLI output styling utilities.

Consistent styling helpers for CLI output:
- Cyan bold for labels
- Green for success messages (with checkmark)
- Red for error messages (with cross)
- Yellow for warnings
- Dim for neutral/empty state messages
"""

from __future__ import annotations

__all__ = [
    "style_dim",
    "style_error",
    "style_label",
    "style_success",
    "style_warning",
]

import click


def style_label(label: str) -> str:
    """Style a label with a colon suffix.

    Example:
        >>> click.echo(style_label("http/https") + " 8080/8443")
        http/https: 8080/8443
    """
    return click.style(f"{label}:", fg="cyan", bold=True)


def style_success(message: str) -> str:
    """Style a success message with checkmark."""
    return click.style(f"✓ {message}", fg="green")


def style_error(message: str) -> str:
    """Style an error message with cross mark.

    Example:
        >>> click.echo(style_error("proxy is not running"), err=True)
        ✗ proxy is not running
    """
    return click.style(f"✗ {message}", fg="red")


def style_dim(message: str) -> str:
    return click.style(message, dim=True)


def style_warning(message: str) -> str:
    """Style a warning message.

    Example:
        >>> click.echo(style_warning("HTTPS cert is not trusted yet"))
        Warning: HTTPS cert is not trusted yet
    """
    return click.style(f"Warning: {message}", fg="yellow", bold=True)
