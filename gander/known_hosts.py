"""Gander host-key trust store (trust on first use).

Keys are kept in an OpenSSH ``known_hosts`` file, so the file can be shared
with or inspected by the regular ssh tooling:

    10.0.0.1 ssh-ed25519 AAAAC3...
    [10.0.0.2]:2022 ssh-ed25519 AAAAC3...
"""

from __future__ import annotations

import enum
import logging
import os
import threading
from pathlib import Path

import asyncssh

from .constants import DEFAULT_SSH_PORT
from .exceptions import GanderError
from .utils import ensure_parent_dir

logger = logging.getLogger("gander")


class TrustDecision(enum.Enum):
    TRUSTED = "trusted"
    LEARNED = "learned"
    MISMATCH = "mismatch"

    @property
    def accepted(self) -> bool:
        return self is not TrustDecision.MISMATCH


def format_host_pattern(address: str, port: int) -> str:
    """Return the known_hosts host field for an endpoint."""
    if port == DEFAULT_SSH_PORT:
        return address
    return f"[{address}]:{port}"


def parse_host_pattern(pattern: str) -> tuple[str, int]:
    """Inverse of format_host_pattern."""
    if pattern.startswith("["):
        address, sep, port = pattern[1:].partition("]:")
        if not sep:
            raise ValueError(f"bad host pattern: {pattern!r}")
        return address, int(port)
    return pattern, DEFAULT_SSH_PORT


def key_fingerprint(key: asyncssh.SSHKey) -> str:
    return key.get_fingerprint("sha256")


class HostKeyTrustStore:
    """Maps (address, port) to the host keys seen for that endpoint."""

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._fingerprints: dict[tuple[str, int], list[str]] = {}
        self._load()

    def _load(self) -> None:
        try:
            f = self.path.open("r", encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError as e:
            raise GanderError(f"Cannot read known hosts file {self.path}: {e}") from e
        with f:
            for lineno, line in enumerate(f, 1):
                self._load_line(line.strip(), lineno)

    def _load_line(self, line: str, lineno: int) -> None:
        # Markers (@cert-authority, @revoked) and hashed hosts are left alone.
        if not line or line.startswith("#") or line.startswith("@") or line.startswith("|"):
            return
        fields = line.split()
        if len(fields) < 3:
            logger.debug("%s:%d: skipping short line", self.path, lineno)
            return
        patterns, algorithm, blob = fields[0], fields[1], fields[2]
        try:
            fingerprint = key_fingerprint(asyncssh.import_public_key(f"{algorithm} {blob}"))
        except asyncssh.KeyImportError as e:
            logger.debug("%s:%d: skipping unreadable key: %s", self.path, lineno, e)
            return
        for pattern in patterns.split(","):
            try:
                endpoint = parse_host_pattern(pattern)
            except ValueError:
                logger.debug("%s:%d: skipping pattern %r", self.path, lineno, pattern)
                continue
            self._fingerprints.setdefault(endpoint, []).append(fingerprint)

    def fingerprints(self, address: str, port: int = DEFAULT_SSH_PORT) -> list[str]:
        """Return the fingerprints recorded for an endpoint."""
        with self._lock:
            return list(self._fingerprints.get((address, port), []))

    def verify(self, address: str, port: int, key: asyncssh.SSHKey) -> TrustDecision:
        """Check a presented host key, learning it if the endpoint is new.

        A mismatch never replaces the recorded key.
        """
        presented = key_fingerprint(key)
        endpoint = (address, port)
        with self._lock:
            known = self._fingerprints.get(endpoint)
            if known is None:
                self._append(address, port, key)
                self._fingerprints[endpoint] = [presented]
                logger.debug(
                    "Learned host key for %s: %s", format_host_pattern(address, port), presented
                )
                return TrustDecision.LEARNED
            if presented in known:
                return TrustDecision.TRUSTED

        logger.warning(
            "Host key mismatch for %s: presented %s, expected %s",
            format_host_pattern(address, port),
            presented,
            ", ".join(known),
        )
        return TrustDecision.MISMATCH

    def _append(self, address: str, port: int, key: asyncssh.SSHKey) -> None:
        public = key.export_public_key("openssh").decode("ascii").split()
        line = f"{format_host_pattern(address, port)} {public[0]} {public[1]}\n"
        ensure_parent_dir(self.path)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)
