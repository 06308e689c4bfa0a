"""CLI entry point for swapmylook.cli module.

Enables execution via: python -m swapmylook.cli <command>
"""

from swapmylook.cli.admin import main

if __name__ == "__main__":
    raise SystemExit(main())
