"""Gander CLI using Click."""

from __future__ import annotations

import logging
import sys
from importlib.metadata import version

import click

from .cli_types import InventoryArgs, PlayArgs, RunArgs
from .commands import cmd_inventory, cmd_play, cmd_run
from .constants import DEFAULT_CONNECT_TIMEOUT_S, PASSPHRASE_ENV_VAR
from .exceptions import CommandFailureError, GanderError, UserError

# Module logger
logger = logging.getLogger("gander")


def setup_logging(debug: bool = False) -> None:
    """Configure logging for the CLI."""
    level = logging.DEBUG if debug else logging.WARNING
    logger.setLevel(level)
    if any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in logger.handlers
    ):
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(handler)


# Options for every command that opens connections
def connection_options(func):
    """Decorator to add connection options to a command."""
    func = click.option(
        "--quiet",
        "-q",
        is_flag=True,
        help="Single-line output.",
    )(func)
    func = click.option(
        "--verbose",
        is_flag=True,
        help="Show endpoints and stderr for each host.",
    )(func)
    func = click.option(
        "--json",
        "json_output",
        is_flag=True,
        help="Emit machine-readable JSON to stdout.",
    )(func)
    func = click.option(
        "--connect-timeout",
        type=float,
        default=DEFAULT_CONNECT_TIMEOUT_S,
        show_default=True,
        help="Per-host SSH connect timeout seconds.",
    )(func)
    func = click.option(
        "--known-hosts",
        type=click.Path(dir_okay=False),
        help="Host-key trust store (default: ~/.gander/known_hosts).",
    )(func)
    func = click.option(
        "--ask-passphrase",
        "-P",
        is_flag=True,
        help=f"Prompt for the key passphrase (or set {PASSPHRASE_ENV_VAR}).",
    )(func)
    func = click.option(
        "--key",
        "-k",
        type=click.Path(exists=True, dir_okay=False),
        required=True,
        help="Administrator private key.",
    )(func)
    return func


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=version("gander"), prog_name="gander")
@click.option(
    "--debug",
    "-d",
    is_flag=True,
    help="Enable debug logging to stderr.",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool):
    """Gander: run commands across an SSH fleet from an inventory tree."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    setup_logging(debug=debug)


@cli.command("inventory")
@click.argument("inventory", type=click.Path(), metavar="INVENTORY_DIR")
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Emit machine-readable JSON to stdout.",
)
def inventory(inventory: str, json_output: bool):
    """Resolve the inventory and print every host."""
    cmd_inventory(InventoryArgs(inventory=inventory, json=json_output))


@cli.command("run")
@click.argument("inventory", type=click.Path(), metavar="INVENTORY_DIR")
@click.argument("command")
@connection_options
@click.option(
    "--host",
    "hosts",
    multiple=True,
    help="Only run on this host path (repeatable).",
)
@click.option(
    "--filter",
    "filters",
    multiple=True,
    metavar="KEY=VALUE",
    help="Only run on hosts whose KEY equals VALUE (repeatable).",
)
def run(
    inventory: str,
    command: str,
    key: str,
    ask_passphrase: bool,
    known_hosts: str | None,
    connect_timeout: float,
    json_output: bool,
    verbose: bool,
    quiet: bool,
    hosts: tuple[str, ...],
    filters: tuple[str, ...],
):
    """Run COMMAND on every selected host in INVENTORY_DIR at once."""
    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    args = RunArgs(
        inventory=inventory,
        key=key,
        ask_passphrase=ask_passphrase,
        known_hosts=known_hosts,
        connect_timeout=connect_timeout,
        json=json_output,
        verbose=verbose,
        quiet=quiet,
        command=command,
        hosts=list(hosts),
        filters=list(filters),
    )
    cmd_run(args)


@cli.command("play")
@click.argument("playbook", type=click.Path())
@click.option(
    "--inventory",
    "-i",
    type=click.Path(),
    required=True,
    help="Inventory directory.",
)
@connection_options
@click.option(
    "--task",
    "tasks",
    multiple=True,
    help="Only run this task (repeatable).",
)
def play(
    playbook: str,
    inventory: str,
    key: str,
    ask_passphrase: bool,
    known_hosts: str | None,
    connect_timeout: float,
    json_output: bool,
    verbose: bool,
    quiet: bool,
    tasks: tuple[str, ...],
):
    """Run the tasks in PLAYBOOK, in order, against the inventory."""
    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    args = PlayArgs(
        inventory=inventory,
        key=key,
        ask_passphrase=ask_passphrase,
        known_hosts=known_hosts,
        connect_timeout=connect_timeout,
        json=json_output,
        verbose=verbose,
        quiet=quiet,
        playbook=playbook,
        tasks=list(tasks),
    )
    cmd_play(args)


def main():
    """Main entry point for the CLI."""
    try:
        cli(standalone_mode=False)
    except click.Abort:
        # Click turns Ctrl-C into Abort
        click.echo("ERROR: Interrupted", err=True)
        sys.exit(130)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except CommandFailureError as e:
        # Results already printed, just exit
        sys.exit(e.rc)
    except UserError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(e.rc)
    except GanderError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(2)
    except KeyboardInterrupt:
        click.echo("ERROR: Interrupted", err=True)
        sys.exit(130)
