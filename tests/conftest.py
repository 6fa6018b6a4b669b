"""Shared pytest fixtures for Gander tests."""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Generator
from pathlib import Path

import asyncssh
import pytest

from gander.inventory import HostSpec, Manifest


@pytest.fixture
def tmp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def inventory_dir(tmp_dir: Path) -> Path:
    """Empty inventory root."""
    root = tmp_dir / "inventory"
    root.mkdir()
    return root


@pytest.fixture
def write_fragment(inventory_dir: Path) -> Callable[[str, str], Path]:
    """Write a TOML fragment at a path relative to the inventory root."""

    def write(relative: str, content: str) -> Path:
        path = inventory_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return write


@pytest.fixture
def sample_inventory(inventory_dir: Path, write_fragment) -> Path:
    """Inventory with root defaults, one group, and three hosts."""
    write_fragment("defaults.toml", 'ssh_user = "alice"\nsite = "ams"\n')
    write_fragment("groupA/defaults.toml", 'ssh_port = 2022\nrole = "web"\n')
    write_fragment("groupA/host1.toml", 'address = "10.0.0.1"\n')
    write_fragment("groupA/host2.toml", 'address = "10.0.0.2"\nssh_user = "bob"\nrole = "db"\n')
    write_fragment("host3.toml", 'address = "10.0.0.3"\n')
    return inventory_dir


def _make_host(
    path: str = "host1",
    address: str = "10.0.0.1",
    *,
    ssh_user: str = "admin",
    ssh_port: int = 22,
    **extra_keys: str,
) -> HostSpec:
    """Build a HostSpec without touching the filesystem."""
    return Manifest(
        address=address, ssh_user=ssh_user, ssh_port=ssh_port, extra_keys=extra_keys
    ).validate(path)


@pytest.fixture
def make_host() -> Callable[..., HostSpec]:
    """Factory for HostSpec values."""
    return _make_host


@pytest.fixture(scope="session")
def admin_key() -> asyncssh.SSHKey:
    """Administrator keypair."""
    return asyncssh.generate_private_key("ssh-ed25519", comment="admin@gander")


@pytest.fixture(scope="session")
def host_key() -> asyncssh.SSHKey:
    """A server host key."""
    return asyncssh.generate_private_key("ssh-ed25519")


@pytest.fixture(scope="session")
def other_host_key() -> asyncssh.SSHKey:
    """A different server host key, for mismatch tests."""
    return asyncssh.generate_private_key("ssh-ed25519")
