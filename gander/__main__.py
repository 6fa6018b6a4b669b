"""Allow running Gander as ``python -m gander``."""

from __future__ import annotations

from .cli import main

if __name__ == "__main__":
    main()
