"""Gander playbook loading and host selection."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import PlaybookError
from .inventory import Inventory


@dataclass(frozen=True)
class Task:
    """One named playbook task."""

    name: str
    commands: tuple[str, ...]
    hosts: tuple[str, ...] = ()
    filter: Mapping[str, str] = field(default_factory=dict, hash=False)
    doas: str | None = None
    source: Path = field(default=Path("playbook.toml"), compare=False)

    @classmethod
    def from_dict(cls, name: str, data: Any, *, path: Path) -> Task:
        if not isinstance(data, dict):
            raise PlaybookError(path, f"task `{name}` must be a table")

        commands = data.get("commands")
        if commands is None:
            raise PlaybookError(path, f"task `{name}`: missing key: `commands`")
        if not isinstance(commands, list) or not all(isinstance(c, str) for c in commands):
            raise PlaybookError(path, f"task `{name}`: `commands` must be a list of strings")

        hosts = data.get("hosts", [])
        if not isinstance(hosts, list) or not all(isinstance(h, str) for h in hosts):
            raise PlaybookError(path, f"task `{name}`: `hosts` must be a list of strings")

        task_filter = data.get("filter", {})
        if not isinstance(task_filter, dict) or not all(
            isinstance(v, str) for v in task_filter.values()
        ):
            raise PlaybookError(path, f"task `{name}`: `filter` must map keys to strings")

        doas = data.get("doas")
        if doas is not None and not isinstance(doas, str):
            raise PlaybookError(path, f"task `{name}`: `doas` must be a string")

        return cls(
            name=name,
            commands=tuple(commands),
            hosts=tuple(hosts),
            filter=dict(task_filter),
            doas=doas,
            source=path,
        )

    def select_hosts(self, inventory: Inventory) -> Inventory:
        """Return the hosts this task targets, in inventory order."""
        try:
            return inventory.select(self.hosts, self.filter)
        except KeyError as e:
            raise PlaybookError(
                self.source, f"task `{self.name}` names unknown hosts: {e.args[0]}"
            ) from e

    def command_line(self) -> str:
        """Join the task's commands into one shell command line."""
        return " && ".join(self.commands)


@dataclass(frozen=True)
class Playbook:
    """Tasks in document order."""

    path: Path
    tasks: tuple[Task, ...]

    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks)

    def __len__(self) -> int:
        return len(self.tasks)

    def get(self, name: str) -> Task | None:
        for task in self.tasks:
            if task.name == name:
                return task
        return None


def load_playbook(path: str | os.PathLike[str]) -> Playbook:
    """Read and parse a playbook file."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise PlaybookError(path, f"cannot read playbook: {e}") from e
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise PlaybookError(path, f"cannot parse playbook: {e}") from e

    # tomllib preserves document order
    tasks = tuple(Task.from_dict(name, body, path=path) for name, body in data.items())
    return Playbook(path=path, tasks=tasks)
