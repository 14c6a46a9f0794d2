"""devwrap: run local apps behind Caddy under friendly local hostnames."""

__version__ = "0.1.0"

__all__ = ["__version__"]
