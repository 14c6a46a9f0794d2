"""Allow running as `python -m devwrap.cli` (used to spawn the daemon)."""

from .main import main

if __name__ == "__main__":
    main()
