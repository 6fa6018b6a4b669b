"""Gander run and play command implementations."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import asyncssh
import click

from ..agent import load_admin_key
from ..connector import HostOutcome, OutcomeStatus, run_fleet, summarize
from ..constants import PASSPHRASE_ENV_VAR
from ..exceptions import CommandFailureError, UserError
from ..inventory import Inventory, load_inventory
from ..known_hosts import HostKeyTrustStore
from ..playbook import Task, load_playbook
from ..utils import default_known_hosts_path, format_elapsed_time, parse_key_value

if TYPE_CHECKING:
    from ..cli_types import ConnectionArgs, PlayArgs, RunArgs

logger = logging.getLogger("gander")


def load_key(args: ConnectionArgs) -> asyncssh.SSHKey:
    """Load the administrator key, asking for a passphrase if requested."""
    passphrase = os.environ.get(PASSPHRASE_ENV_VAR)
    if passphrase is None and args.ask_passphrase:
        passphrase = click.prompt(
            f"Passphrase for {args.key}", hide_input=True, default="", show_default=False
        )
    return load_admin_key(args.key, passphrase or None)


def open_trust_store(args: ConnectionArgs) -> HostKeyTrustStore:
    path = Path(args.known_hosts) if args.known_hosts else default_known_hosts_path()
    return HostKeyTrustStore(path)


def parse_filters(items: list[str]) -> dict[str, str]:
    filters: dict[str, str] = {}
    for item in items:
        try:
            k, v = parse_key_value(item)
        except ValueError as e:
            raise UserError(f"Invalid --filter: {e}") from e
        filters[k] = v
    return filters


def select_hosts(inventory: Inventory, names: list[str], filters: dict[str, str]) -> Inventory:
    try:
        selected = inventory.select(names, filters)
    except KeyError as e:
        raise UserError(f"Unknown hosts: {e.args[0]}") from e
    if not selected:
        raise UserError("No hosts matched the selection")
    return selected


def format_outcome_line(outcome: HostOutcome) -> str:
    """Format one host outcome as a status line."""
    host = outcome.host.path
    elapsed = format_elapsed_time(outcome.elapsed_s)
    if outcome.ok:
        symbol = "✓" if outcome.exit_status == 0 else "⚠"
        return f"{symbol} {host} (exit {outcome.exit_status}, {elapsed})"
    return f"✗ {host}: {outcome.status.value}: {outcome.error} ({elapsed})"


def format_quiet(summary: dict[str, Any], elapsed_seconds: float) -> str:
    """Format a run summary as a single line."""
    total = summary["total"]
    successful = summary["successful"]
    failed = summary["failed"]
    elapsed = format_elapsed_time(elapsed_seconds)

    if failed == 0 and summary["nonzero_exit"] == 0:
        symbol = "✓"
    elif failed == total:
        symbol = "✗"
    else:
        symbol = "⚠"
    failure_text = f" ({failed} failed)" if failed else ""
    return f"{symbol} {successful}/{total} hosts successful{failure_text} ({elapsed})"


def _indent(text: str, prefix: str = "    ") -> list[str]:
    return [prefix + line for line in text.rstrip("\n").splitlines()]


def format_summary_table(outcomes: list[HostOutcome], verbose: bool = False) -> str:
    """Format outcomes as a human-readable report."""
    summary = summarize(outcomes)
    total = summary["total"]

    lines = []
    lines.append("\nSummary:")
    lines.append("=" * 60)
    lines.append(f"Total hosts:        {total}")
    if total:
        successful = summary["successful"]
        failed = summary["failed"]
        lines.append(f"Successful:         {successful} ({100 * successful / total:.1f}%)")
        lines.append(f"Failed:             {failed} ({100 * failed / total:.1f}%)")
        for status, count in summary["by_status"].items():
            if status != OutcomeStatus.SUCCESS.value and count:
                lines.append(f"  - {status + ':':<16}{count}")
        if summary["nonzero_exit"]:
            lines.append(f"Non-zero exit:      {summary['nonzero_exit']}")

    lines.append("\nStatus by Host:")
    lines.append("-" * 60)
    for outcome in outcomes:
        lines.append(format_outcome_line(outcome))
        if verbose:
            host = outcome.host
            lines.append(f"    Endpoint: {host.ssh_user}@{host.address}:{host.ssh_port}")
        if outcome.stdout:
            lines.extend(_indent(outcome.stdout))
        if verbose and outcome.stderr:
            lines.append("    stderr:")
            lines.extend(_indent(outcome.stderr, "      "))

    return "\n".join(lines)


def _failed(outcomes: list[HostOutcome]) -> bool:
    return any(not o.ok or o.exit_status != 0 for o in outcomes)


def _connect(
    args: ConnectionArgs, jobs: list[tuple[Inventory, str]]
) -> list[list[HostOutcome]]:
    key = load_key(args)
    trust_store = open_trust_store(args)
    return asyncio.run(
        run_fleet(
            jobs,
            key=key,
            trust_store=trust_store,
            connect_timeout=args.connect_timeout,
        )
    )


def cmd_run(args: RunArgs) -> None:
    """Run one command on every selected host."""
    start_time = time.time()
    inventory = load_inventory(args.inventory).sorted()
    hosts = select_hosts(inventory, args.hosts, parse_filters(args.filters))

    if not args.json and not args.quiet:
        print(f"Running on {len(hosts)} hosts: {args.command}")

    [outcomes] = _connect(args, [(hosts, args.command)])
    elapsed_seconds = time.time() - start_time

    if args.json:
        report = {
            "command": args.command,
            "results": [o.to_dict() for o in outcomes],
            "summary": summarize(outcomes),
        }
        print(json.dumps(report, indent=2, sort_keys=True))
    elif args.quiet:
        print(format_quiet(summarize(outcomes), elapsed_seconds))
    else:
        print(format_summary_table(outcomes, verbose=args.verbose))

    if _failed(outcomes):
        raise CommandFailureError(rc=1)


def resolve_tasks(
    task_names: list[str], tasks: list[Task], inventory: Inventory
) -> list[tuple[Task, Inventory]]:
    """Pick tasks by name and resolve each task's hosts."""
    if task_names:
        by_name = {t.name: t for t in tasks}
        unknown = [n for n in task_names if n not in by_name]
        if unknown:
            raise UserError(f"Unknown tasks: {', '.join(unknown)}")
        wanted = set(task_names)
        tasks = [t for t in tasks if t.name in wanted]

    resolved = []
    for task in tasks:
        hosts = task.select_hosts(inventory)
        if task.doas:
            logger.warning("Task %s: doas=%s is not applied", task.name, task.doas)
        if not hosts:
            logger.warning("Task %s: no hosts matched, skipping", task.name)
            continue
        resolved.append((task, hosts))
    return resolved


def cmd_play(args: PlayArgs) -> None:
    """Run playbook tasks in document order."""
    start_time = time.time()
    # Load and resolve everything before the first connection.
    playbook = load_playbook(args.playbook)
    inventory = load_inventory(args.inventory).sorted()
    resolved = resolve_tasks(args.tasks, list(playbook), inventory)
    if not resolved:
        raise UserError("No tasks to run")

    results = _connect(args, [(hosts, task.command_line()) for task, hosts in resolved])
    elapsed_seconds = time.time() - start_time

    if args.json:
        report = {
            "tasks": [
                {
                    "task": task.name,
                    "command": task.command_line(),
                    "results": [o.to_dict() for o in outcomes],
                    "summary": summarize(outcomes),
                }
                for (task, _), outcomes in zip(resolved, results)
            ]
        }
        print(json.dumps(report, indent=2, sort_keys=True))
    else:
        for (task, _), outcomes in zip(resolved, results):
            if args.quiet:
                print(f"{task.name}: {format_quiet(summarize(outcomes), elapsed_seconds)}")
            else:
                print(f"\nTask: {task.name}")
                print(f"Command: {task.command_line()}")
                print(format_summary_table(outcomes, verbose=args.verbose))

    if any(_failed(outcomes) for outcomes in results):
        raise CommandFailureError(rc=1)
