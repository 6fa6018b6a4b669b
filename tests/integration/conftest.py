"""Pytest fixtures for E2E integration tests.

Servers are real asyncssh SSH servers on 127.0.0.1, each run on its own
event loop in a background thread so tests can drive Gander through
``asyncio.run`` exactly as the CLI does.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import Callable, Generator, Iterator
from pathlib import Path

import asyncssh
import pytest


async def _echo_process(process: asyncssh.SSHServerProcess) -> None:
    """Echo the command back; ``exit N`` exits with status N.

    ``binary`` writes bytes that are not valid UTF-8.
    """
    command = process.command or ""
    if isinstance(command, bytes):
        command = command.decode()
    if command.startswith("exit "):
        process.exit(int(command.split()[1]))
        return
    if command == "binary":
        process.stdout.write(b"\xff\xfe binary\n")
    else:
        process.stdout.write(f"ran: {command}\n".encode())
    process.stderr.write(f"user: {process.get_extra_info('username')}\n".encode())
    process.exit(0)


@contextlib.contextmanager
def serve_ssh(host_key: asyncssh.SSHKey, client_key: asyncssh.SSHKey) -> Iterator[int]:
    """Run an SSH server accepting ``client_key``; yields its port."""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()

    def call(awaitable):
        async def _await():
            return await awaitable

        return asyncio.run_coroutine_threadsafe(_await(), loop).result(timeout=10)

    authorized = asyncssh.import_authorized_keys(client_key.export_public_key().decode())
    server = call(
        asyncssh.listen(
            "127.0.0.1",
            0,
            server_host_keys=[host_key],
            authorized_client_keys=authorized,
            process_factory=_echo_process,
            # Channels carry bytes
            encoding=None,
        )
    )
    try:
        yield server.get_port()
    finally:
        loop.call_soon_threadsafe(server.close)
        call(server.wait_closed())
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=10)
        loop.close()


@pytest.fixture(name="serve_ssh")
def serve_ssh_fixture() -> Callable[..., contextlib.AbstractContextManager[int]]:
    """Context manager factory for extra SSH servers."""
    return serve_ssh


@pytest.fixture
def ssh_server(host_key, admin_key) -> Generator[int, None, None]:
    """One SSH server that trusts the administrator key."""
    with serve_ssh(host_key, admin_key) as port:
        yield port


@pytest.fixture
def gander_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Provide isolated $HOME so ~/.gander/ is per-test."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    return home_dir


@pytest.fixture
def local_inventory(inventory_dir: Path, write_fragment) -> Callable[..., Path]:
    """Write an inventory whose hosts all point at 127.0.0.1."""

    def build(**ports: int) -> Path:
        write_fragment("defaults.toml", 'ssh_user = "tester"\naddress = "127.0.0.1"\n')
        for name, port in ports.items():
            write_fragment(f"lab/{name}.toml", f"ssh_port = {port}\n")
        return inventory_dir

    return build
