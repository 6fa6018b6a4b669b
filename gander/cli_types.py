"""Type definitions for CLI command arguments."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class InventoryArgs:
    """Arguments for inventory command."""

    inventory: str
    json: bool


@dataclass
class ConnectionArgs:
    """Options shared by every command that connects to hosts."""

    inventory: str
    key: str
    known_hosts: str | None
    connect_timeout: float
    json: bool
    verbose: bool
    quiet: bool
    ask_passphrase: bool


@dataclass
class RunArgs(ConnectionArgs):
    """Arguments for run command."""

    command: str = ""
    hosts: list[str] = field(default_factory=list)
    filters: list[str] = field(default_factory=list)


@dataclass
class PlayArgs(ConnectionArgs):
    """Arguments for play command."""

    playbook: str = ""
    tasks: list[str] = field(default_factory=list)
