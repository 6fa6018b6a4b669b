"""
Gander - run commands across an SSH fleet described by an inventory tree.

Design goals:
- Inventory is plain files in a directory tree; groups share defaults.
- One administrator key, decrypted once, served to every connection by an
  in-process agent.
- Host keys are trusted on first use and pinned afterwards.
- Every host is attempted at once and fails on its own.
"""

from __future__ import annotations

from .cli import main
from .exceptions import GanderError, ManifestError, MissingFieldError, UserError
from .inventory import HostSpec, Inventory, load_inventory

__all__ = [
    "GanderError",
    "HostSpec",
    "Inventory",
    "ManifestError",
    "MissingFieldError",
    "UserError",
    "load_inventory",
    "main",
]
