"""Gander inventory command implementation."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from ..inventory import HostSpec, load_inventory

if TYPE_CHECKING:
    from ..cli_types import InventoryArgs


def format_host_line(host: HostSpec) -> str:
    """Format one resolved host as a single line."""
    line = f"{host.path}  {host.ssh_user}@{host.address}:{host.ssh_port}"
    if host.extra_keys:
        extras = " ".join(f"{k}={v}" for k, v in sorted(host.extra_keys.items()))
        line += f"  {extras}"
    return line


def cmd_inventory(args: InventoryArgs) -> None:
    """Resolve the inventory and print every host."""
    inventory = load_inventory(args.inventory).sorted()
    if args.json:
        print(json.dumps([h.to_dict() for h in inventory], indent=2, sort_keys=True))
        return
    for host in inventory:
        print(format_host_line(host))
    print(f"\n{len(inventory)} hosts")
