"""Gander command implementations."""

from __future__ import annotations

from .inventory import cmd_inventory
from .run import cmd_play, cmd_run

__all__ = [
    "cmd_inventory",
    "cmd_play",
    "cmd_run",
]
