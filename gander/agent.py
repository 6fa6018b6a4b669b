"""Gander credential relay.

The relay holds the single decrypted administrator key for the duration of
a fleet run and answers ssh-agent protocol requests on a private Unix
socket. Every connection attempt opens its own agent client to the relay,
so the key itself is never handed to connection code.

Only the requests an SSH client needs for public key authentication are
served: listing identities and signing. Everything else gets
SSH_AGENT_FAILURE.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import struct
import tempfile
from pathlib import Path

import asyncssh

from .constants import (
    AGENT_MAX_MESSAGE_LEN,
    RELAY_SOCKET_NAME,
    SSH_AGENT_FAILURE,
    SSH_AGENT_IDENTITIES_ANSWER,
    SSH_AGENT_RSA_SHA2_256,
    SSH_AGENT_RSA_SHA2_512,
    SSH_AGENT_SIGN_RESPONSE,
    SSH_AGENTC_REQUEST_IDENTITIES,
    SSH_AGENTC_SIGN_REQUEST,
)
from .exceptions import AgentError, UserError

logger = logging.getLogger("gander")

_FAILURE = bytes([SSH_AGENT_FAILURE])


def load_admin_key(path: str | os.PathLike[str], passphrase: str | None = None) -> asyncssh.SSHKey:
    """Decrypt and load the administrator private key."""
    try:
        return asyncssh.read_private_key(str(path), passphrase)
    except FileNotFoundError as e:
        raise UserError(f"Key file not found: {path}") from e
    except asyncssh.KeyEncryptionError as e:
        raise UserError(f"Cannot decrypt key {path}: {e}") from e
    except (OSError, asyncssh.KeyImportError) as e:
        raise UserError(f"Cannot load key {path}: {e}") from e


def _pack_string(value: bytes) -> bytes:
    return struct.pack(">I", len(value)) + value


def _unpack_string(buf: bytes, offset: int) -> tuple[bytes, int]:
    if offset + 4 > len(buf):
        raise ValueError("truncated string length")
    (length,) = struct.unpack_from(">I", buf, offset)
    start = offset + 4
    end = start + length
    if end > len(buf):
        raise ValueError("truncated string")
    return buf[start:end], end


def parse_sign_request(payload: bytes) -> tuple[bytes, bytes, int]:
    """Parse the body of SSH_AGENTC_SIGN_REQUEST into (key_blob, data, flags)."""
    key_blob, offset = _unpack_string(payload, 0)
    data, offset = _unpack_string(payload, offset)
    if offset + 4 != len(payload):
        raise ValueError("malformed sign request")
    (flags,) = struct.unpack_from(">I", payload, offset)
    return key_blob, data, flags


class CredentialRelay:
    """In-process ssh-agent serving one administrator key.

    Use as an async context manager, or call ``start()`` and ``close()``
    explicitly. Handles returned by ``connect()`` are independent; any
    number may be open at once.
    """

    def __init__(self, key: asyncssh.SSHKey):
        self._key = key
        self._public_blob: bytes = key.public_data
        self._sign_lock = asyncio.Lock()
        self._server: asyncio.AbstractServer | None = None
        self._socket_dir: Path | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    @property
    def public_key(self) -> asyncssh.SSHKey:
        return self._key.convert_to_public()

    @property
    def socket_path(self) -> Path:
        if self._socket_dir is None:
            raise AgentError("credential relay is not running")
        return self._socket_dir / RELAY_SOCKET_NAME

    @property
    def running(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        if self._server is not None:
            raise AgentError("credential relay already started")
        # mkdtemp creates the directory with mode 0700
        self._socket_dir = Path(tempfile.mkdtemp(prefix="gander-agent-"))
        try:
            self._server = await asyncio.start_unix_server(
                self._handle_client, path=str(self.socket_path)
            )
        except OSError as e:
            shutil.rmtree(self._socket_dir, ignore_errors=True)
            self._socket_dir = None
            raise AgentError(f"cannot start credential relay: {e}") from e
        logger.debug("Credential relay listening on %s", self.socket_path)

    async def connect(self) -> asyncssh.SSHAgentClient:
        """Open a new agent handle to the relay."""
        if self._server is None:
            raise AgentError("credential relay is not running")
        try:
            agent = await asyncssh.connect_agent(str(self.socket_path))
        except OSError as e:
            raise AgentError(f"cannot connect to credential relay: {e}") from e
        if agent is None:
            raise AgentError("cannot connect to credential relay")
        return agent

    async def close(self) -> None:
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        for writer in list(self._writers):
            writer.close()
        await server.wait_closed()
        if self._socket_dir is not None:
            shutil.rmtree(self._socket_dir, ignore_errors=True)
            self._socket_dir = None
        logger.debug("Credential relay stopped")

    async def __aenter__(self) -> CredentialRelay:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self._writers.add(writer)
        try:
            while self._server is not None:
                try:
                    header = await reader.readexactly(4)
                except asyncio.IncompleteReadError:
                    break
                (length,) = struct.unpack(">I", header)
                if length == 0 or length > AGENT_MAX_MESSAGE_LEN:
                    logger.debug("Agent request with bad length %d, dropping client", length)
                    break
                message = await reader.readexactly(length)
                response = await self._dispatch(message)
                writer.write(_pack_string(response))
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError) as e:
            logger.debug("Agent client went away: %s", e)
        finally:
            self._writers.discard(writer)
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()

    async def _dispatch(self, message: bytes) -> bytes:
        msg_type, payload = message[0], message[1:]
        if msg_type == SSH_AGENTC_REQUEST_IDENTITIES:
            return self._identities_answer()
        if msg_type == SSH_AGENTC_SIGN_REQUEST:
            return await self._sign(payload)
        logger.debug("Unsupported agent request type %d", msg_type)
        return _FAILURE

    def _identities_answer(self) -> bytes:
        comment = self._key.get_comment_bytes() or b""
        return (
            bytes([SSH_AGENT_IDENTITIES_ANSWER])
            + struct.pack(">I", 1)
            + _pack_string(self._public_blob)
            + _pack_string(comment)
        )

    def _sig_algorithm(self, flags: int) -> bytes:
        algorithm = self._key.algorithm
        if algorithm == b"ssh-rsa":
            if flags & SSH_AGENT_RSA_SHA2_512:
                return b"rsa-sha2-512"
            if flags & SSH_AGENT_RSA_SHA2_256:
                return b"rsa-sha2-256"
        return algorithm

    async def _sign(self, payload: bytes) -> bytes:
        try:
            key_blob, data, flags = parse_sign_request(payload)
        except ValueError as e:
            logger.debug("Malformed sign request: %s", e)
            return _FAILURE
        if key_blob != self._public_blob:
            logger.debug("Sign request for a key the relay does not hold")
            return _FAILURE

        sig_algorithm = self._sig_algorithm(flags)
        try:
            async with self._sign_lock:
                signature = await asyncio.to_thread(self._key.sign, data, sig_algorithm)
        except ValueError as e:
            logger.warning("Credential relay failed to sign: %s", e)
            return _FAILURE
        return bytes([SSH_AGENT_SIGN_RESPONSE]) + _pack_string(signature)
