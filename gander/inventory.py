"""Gander inventory loading.

An inventory is a directory tree of TOML fragments. A file named
``defaults.*`` holds group defaults for its directory and everything below
it; any other file describes one host, identified by its path relative to
the inventory root with the extension stripped.

A host's settings are the host fragment folded with the group defaults of
every ancestor directory, nearest first. The nearest value wins for scalar
keys, and extra keys are unioned with the same precedence.
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from types import MappingProxyType
from typing import Any

from .constants import DEFAULT_SSH_PORT, DEFAULTS_STEM
from .exceptions import ManifestError, MissingFieldError, UserError
from .utils import natural_sort_key

logger = logging.getLogger("gander")

_SCALAR_KEYS = ("address", "ssh_user", "ssh_port")


@dataclass(frozen=True)
class Manifest:
    """One inventory fragment: a host file or a group-defaults file."""

    address: str | None = None
    ssh_user: str | None = None
    ssh_port: int | None = None
    extra_keys: Mapping[str, str] = field(default_factory=dict, hash=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, path: Path) -> Manifest:
        """Build a manifest from a parsed document, checking value types."""
        address = data.get("address")
        if address is not None and not isinstance(address, str):
            raise ManifestError(path, "`address` must be a string")
        ssh_user = data.get("ssh_user")
        if ssh_user is not None and not isinstance(ssh_user, str):
            raise ManifestError(path, "`ssh_user` must be a string")
        ssh_port = data.get("ssh_port")
        if ssh_port is not None:
            # bool is an int subclass
            if isinstance(ssh_port, bool) or not isinstance(ssh_port, int):
                raise ManifestError(path, "`ssh_port` must be an integer")
            if not 0 < ssh_port < 65536:
                raise ManifestError(path, f"`ssh_port` out of range: {ssh_port}")

        extra_keys: dict[str, str] = {}
        for key, value in data.items():
            if key in _SCALAR_KEYS:
                continue
            if not isinstance(value, str):
                raise ManifestError(path, f"`{key}` must be a string")
            extra_keys[key] = value

        return cls(address=address, ssh_user=ssh_user, ssh_port=ssh_port, extra_keys=extra_keys)

    def or_else(self, other: Manifest) -> Manifest:
        """Fill keys missing from ``self`` with keys from ``other``.

        ``self`` wins every conflict, including on extra keys.
        """
        extra_keys = dict(other.extra_keys)
        extra_keys.update(self.extra_keys)
        return Manifest(
            address=self.address if self.address is not None else other.address,
            ssh_user=self.ssh_user if self.ssh_user is not None else other.ssh_user,
            ssh_port=self.ssh_port if self.ssh_port is not None else other.ssh_port,
            extra_keys=extra_keys,
        )

    def validate(self, host_path: str) -> HostSpec:
        """Turn a fully merged manifest into a HostSpec."""
        if not self.address:
            raise MissingFieldError("address", host_path)
        if not self.ssh_user:
            raise MissingFieldError("ssh_user", host_path)
        return HostSpec(
            path=host_path,
            address=self.address,
            ssh_user=self.ssh_user,
            ssh_port=self.ssh_port if self.ssh_port is not None else DEFAULT_SSH_PORT,
            extra_keys=MappingProxyType(dict(self.extra_keys)),
        )


@dataclass(frozen=True)
class HostSpec:
    """Fully resolved connection settings for one host."""

    path: str
    address: str
    ssh_user: str
    ssh_port: int
    extra_keys: Mapping[str, str] = field(hash=False)

    @property
    def endpoint(self) -> tuple[str, int]:
        return (self.address, self.ssh_port)

    def matches(self, filters: Mapping[str, str]) -> bool:
        """Return True if every filter key equals this host's extra key."""
        return all(self.extra_keys.get(k) == v for k, v in filters.items())

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "address": self.address,
            "ssh_user": self.ssh_user,
            "ssh_port": self.ssh_port,
            "extra_keys": dict(self.extra_keys),
        }


class Inventory(Sequence[HostSpec]):
    """Immutable, ordered collection of resolved hosts."""

    def __init__(self, hosts: Iterable[HostSpec] = ()):
        self._hosts: tuple[HostSpec, ...] = tuple(hosts)

    def __getitem__(self, index):  # type: ignore[override]
        if isinstance(index, slice):
            return Inventory(self._hosts[index])
        return self._hosts[index]

    def __len__(self) -> int:
        return len(self._hosts)

    def __iter__(self) -> Iterator[HostSpec]:
        return iter(self._hosts)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Inventory):
            return self._hosts == other._hosts
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._hosts)

    def __repr__(self) -> str:
        return f"Inventory({[h.path for h in self._hosts]!r})"

    @property
    def names(self) -> list[str]:
        return [h.path for h in self._hosts]

    def sorted(self) -> Inventory:
        """Return a copy ordered by natural sort of host path."""
        return Inventory(sorted(self._hosts, key=lambda h: natural_sort_key(h.path)))

    def get(self, name: str) -> HostSpec | None:
        for host in self._hosts:
            if host.path == name:
                return host
        return None

    def select(
        self,
        names: Iterable[str] = (),
        filters: Mapping[str, str] | None = None,
    ) -> Inventory:
        """Select hosts by name and/or extra-key filters.

        An empty ``names`` means every host. Unknown names raise KeyError.
        """
        wanted = list(names)
        if wanted:
            unknown = [n for n in wanted if self.get(n) is None]
            if unknown:
                raise KeyError(", ".join(unknown))
            wanted_set = set(wanted)
            hosts = [h for h in self._hosts if h.path in wanted_set]
        else:
            hosts = list(self._hosts)
        if filters:
            hosts = [h for h in hosts if h.matches(filters)]
        return Inventory(hosts)


def _host_id(relative_path: PurePath) -> str:
    """Host identifier: relative POSIX path without extension."""
    return relative_path.with_suffix("").as_posix()


def read_manifest(path: Path) -> Manifest:
    """Read and parse one fragment file."""
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(path, f"cannot read manifest: {e}") from e
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ManifestError(path, f"cannot parse manifest: {e}") from e
    return Manifest.from_dict(data, path=path)


def _walk_files(base: Path) -> Iterator[Path]:
    def onerror(err: OSError) -> None:
        raise ManifestError(Path(err.filename or base), f"cannot read directory: {err}")

    for dirpath, _dirnames, filenames in os.walk(base, onerror=onerror):
        for filename in filenames:
            yield Path(dirpath) / filename


def load_inventory(base: str | os.PathLike[str]) -> Inventory:
    """Load every host under ``base`` and resolve its settings.

    Hosts are returned in filesystem traversal order; use
    ``Inventory.sorted()`` when a stable order is needed.

    Raises:
        UserError: ``base`` is not a directory.
        ManifestError: a fragment cannot be read or parsed.
        MissingFieldError: a host lacks ``address`` or ``ssh_user``.
    """
    base = Path(base)
    if not base.is_dir():
        raise UserError(f"Inventory directory not found: {base}")

    group_manifests: dict[PurePath, Manifest] = {}
    group_sources: dict[PurePath, Path] = {}
    host_manifests: list[tuple[PurePath, Manifest]] = []

    for path in _walk_files(base):
        relative = path.relative_to(base)
        manifest = read_manifest(path)
        if path.stem == DEFAULTS_STEM:
            group = relative.parent
            if group in group_manifests:
                raise ManifestError(
                    path, f"conflicting group defaults, already loaded {group_sources[group]}"
                )
            group_manifests[group] = manifest
            group_sources[group] = path
            logger.debug("Loaded group defaults for %s from %s", group.as_posix(), path)
        else:
            host_manifests.append((relative, manifest))

    hosts = []
    for relative, manifest in host_manifests:
        merged = manifest
        for group in relative.parents:
            group_manifest = group_manifests.get(group)
            if group_manifest is not None:
                merged = merged.or_else(group_manifest)
        hosts.append(merged.validate(_host_id(relative)))

    logger.debug("Resolved %d hosts from %s", len(hosts), base)
    return Inventory(hosts)
