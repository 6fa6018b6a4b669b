"""Gander fleet connector.

Opens one SSH session per host, all at once, and runs a single command on
each. Every host ends with exactly one HostOutcome; a failure on one host
never affects another.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import asyncssh

from .agent import CredentialRelay
from .constants import DEFAULT_CONNECT_TIMEOUT_S
from .exceptions import AgentError
from .inventory import HostSpec
from .known_hosts import HostKeyTrustStore, TrustDecision

logger = logging.getLogger("gander")


class OutcomeStatus(enum.Enum):
    SUCCESS = "success"
    CONNECT_FAILURE = "connect_failure"
    AUTH_FAILURE = "auth_failure"
    HOST_KEY_MISMATCH = "host_key_mismatch"
    AGENT_FAILURE = "agent_failure"


@dataclass(frozen=True)
class HostOutcome:
    """Terminal result of one connect-and-run attempt."""

    host: HostSpec
    status: OutcomeStatus
    stdout: str = ""
    stderr: str = ""
    exit_status: int | None = None
    error: str = ""
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host.path,
            "address": self.host.address,
            "port": self.host.ssh_port,
            "ok": self.ok,
            "status": self.status.value,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_status": self.exit_status,
            "error": self.error,
            "elapsed_s": round(self.elapsed_s, 3),
        }


class TrustStoreClient(asyncssh.SSHClient):
    """SSH client callbacks that check the server key against a trust store."""

    def __init__(self, trust_store: HostKeyTrustStore, address: str, port: int):
        self._trust_store = trust_store
        self._address = address
        self._port = port
        self.decision: TrustDecision | None = None

    def validate_host_public_key(
        self, host: str, addr: str, port: int, key: asyncssh.SSHKey
    ) -> bool:
        # Keyed by the inventory address, not the resolved IP.
        self.decision = self._trust_store.verify(self._address, self._port, key)
        return self.decision.accepted


class FleetConnector:
    """Fan out one command to many hosts using a shared credential relay."""

    def __init__(
        self,
        relay: CredentialRelay,
        trust_store: HostKeyTrustStore,
        identity: asyncssh.SSHKey,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_S,
    ):
        self.relay = relay
        self.trust_store = trust_store
        self.identity = identity
        self.connect_timeout = connect_timeout

    async def run(self, hosts: Iterable[HostSpec], command: str) -> list[HostOutcome]:
        """Run ``command`` on every host concurrently.

        Outcomes are returned in the order the hosts were given.
        """
        hosts = list(hosts)
        logger.debug("Running on %d hosts: %s", len(hosts), command)
        return list(await asyncio.gather(*(self.run_host(host, command) for host in hosts)))

    async def run_host(self, host: HostSpec, command: str) -> HostOutcome:
        start = time.monotonic()

        def outcome(status: OutcomeStatus, **kwargs: Any) -> HostOutcome:
            elapsed = time.monotonic() - start
            logger.debug("Host %s: %s (%.2fs)", host.path, status.value, elapsed)
            return HostOutcome(host=host, status=status, elapsed_s=elapsed, **kwargs)

        try:
            agent = await self.relay.connect()
        except AgentError as e:
            return outcome(OutcomeStatus.AGENT_FAILURE, error=str(e))

        try:
            try:
                client_keys = await self._identity_keys(agent)
            except (AgentError, ValueError, OSError) as e:
                return outcome(OutcomeStatus.AGENT_FAILURE, error=str(e))
            return await self._connect_and_run(host, command, client_keys, outcome)
        finally:
            agent.close()
            await agent.wait_closed()

    async def _identity_keys(self, agent: asyncssh.SSHAgentClient) -> list[asyncssh.SSHKeyPair]:
        keys = await agent.get_keys()
        wanted = self.identity.public_data
        matching = [k for k in keys if k.public_data == wanted]
        if not matching:
            raise AgentError("credential relay does not hold the administrator key")
        return matching

    async def _connect_and_run(
        self,
        host: HostSpec,
        command: str,
        client_keys: list[asyncssh.SSHKeyPair],
        outcome: Callable[..., HostOutcome],
    ) -> HostOutcome:
        client = TrustStoreClient(self.trust_store, *host.endpoint)
        logger.debug(
            "Host %s: connecting to %s@%s:%d",
            host.path,
            host.ssh_user,
            host.address,
            host.ssh_port,
        )
        try:
            conn, _ = await asyncio.wait_for(
                asyncssh.create_connection(
                    lambda: client,
                    host.address,
                    port=host.ssh_port,
                    username=host.ssh_user,
                    client_keys=client_keys,
                    agent_path=None,
                    preferred_auth="publickey",
                    # Empty trusted lists: every key goes through the client callback.
                    known_hosts=([], [], []),
                ),
                timeout=self.connect_timeout,
            )
        except TimeoutError:
            return outcome(
                OutcomeStatus.CONNECT_FAILURE,
                error=f"connect timed out after {self.connect_timeout:g}s",
            )
        except asyncssh.HostKeyNotVerifiable as e:
            if client.decision is TrustDecision.MISMATCH:
                return outcome(OutcomeStatus.HOST_KEY_MISMATCH, error=_host_key_error(host, e))
            return outcome(OutcomeStatus.CONNECT_FAILURE, error=str(e))
        except asyncssh.PermissionDenied as e:
            return outcome(OutcomeStatus.AUTH_FAILURE, error=str(e) or "permission denied")
        except asyncssh.Error as e:
            return outcome(OutcomeStatus.CONNECT_FAILURE, error=str(e))
        except OSError as e:
            return outcome(OutcomeStatus.CONNECT_FAILURE, error=str(e))
        except UnicodeError as e:
            # Address cannot be IDNA-encoded for resolution.
            return outcome(OutcomeStatus.CONNECT_FAILURE, error=f"invalid address: {e}")
        except ValueError as e:
            # Raised out of the auth exchange when the agent cannot sign.
            return outcome(OutcomeStatus.AGENT_FAILURE, error=str(e))

        try:
            async with conn:
                # Raw bytes; decoded leniently below.
                result = await conn.run(command, check=False, encoding=None)
        except (asyncssh.Error, OSError) as e:
            return outcome(OutcomeStatus.CONNECT_FAILURE, error=str(e))

        return outcome(
            OutcomeStatus.SUCCESS,
            stdout=_as_text(result.stdout),
            stderr=_as_text(result.stderr),
            exit_status=result.exit_status,
        )


def _host_key_error(host: HostSpec, exc: Exception) -> str:
    return (
        f"host key for {host.address}:{host.ssh_port} does not match the trust store "
        f"(possible impersonation): {exc}"
    )


def _as_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", "replace")
    return data


def summarize(outcomes: Iterable[HostOutcome]) -> dict[str, Any]:
    """Count outcomes per status."""
    outcomes = list(outcomes)
    counts = Counter(o.status for o in outcomes)
    return {
        "total": len(outcomes),
        "successful": counts[OutcomeStatus.SUCCESS],
        "failed": len(outcomes) - counts[OutcomeStatus.SUCCESS],
        "by_status": {s.value: counts[s] for s in OutcomeStatus},
        "nonzero_exit": sum(1 for o in outcomes if o.ok and o.exit_status not in (0, None)),
    }


async def run_fleet(
    jobs: Iterable[tuple[Iterable[HostSpec], str]],
    *,
    key: asyncssh.SSHKey,
    trust_store: HostKeyTrustStore,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_S,
) -> list[list[HostOutcome]]:
    """Start a relay for ``key``, run each (hosts, command) job, stop the relay.

    Jobs run one after another; each command is fanned out to its hosts.
    """
    results = []
    async with CredentialRelay(key) as relay:
        connector = FleetConnector(
            relay, trust_store, relay.public_key, connect_timeout=connect_timeout
        )
        for hosts, command in jobs:
            results.append(await connector.run(hosts, command))
    return results
