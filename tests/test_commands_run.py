"""Tests for gander/commands/run.py - selection, key loading and report formatting."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from gander.cli_types import RunArgs
from gander.commands.inventory import format_host_line
from gander.commands.run import (
    format_outcome_line,
    format_quiet,
    format_summary_table,
    load_key,
    open_trust_store,
    parse_filters,
    resolve_tasks,
    select_hosts,
)
from gander.connector import HostOutcome, OutcomeStatus, summarize
from gander.constants import PASSPHRASE_ENV_VAR
from gander.exceptions import PlaybookError, UserError
from gander.inventory import Inventory
from gander.playbook import Task


def make_args(**overrides) -> RunArgs:
    values = {
        "inventory": "inv",
        "key": "id_ed25519",
        "known_hosts": None,
        "connect_timeout": 5.0,
        "json": False,
        "verbose": False,
        "quiet": False,
        "ask_passphrase": False,
    }
    values.update(overrides)
    return RunArgs(**values)


@pytest.fixture
def inventory(make_host) -> Inventory:
    return Inventory(
        [
            make_host("web1", "10.0.0.1", role="web"),
            make_host("web2", "10.0.0.2", role="web"),
            make_host("db1", "10.0.0.3", role="db"),
        ]
    )


class TestSelection:
    """Tests for parse_filters and select_hosts."""

    def test_parse_filters(self):
        assert parse_filters(["role=web", "site = ams"]) == {"role": "web", "site": "ams"}

    def test_parse_filters_invalid(self):
        with pytest.raises(UserError, match="Invalid --filter"):
            parse_filters(["role"])

    def test_select_everything(self, inventory: Inventory):
        assert select_hosts(inventory, [], {}) == inventory

    def test_select_by_filter(self, inventory: Inventory):
        assert select_hosts(inventory, [], {"role": "db"}).names == ["db1"]

    def test_unknown_host(self, inventory: Inventory):
        with pytest.raises(UserError, match="Unknown hosts"):
            select_hosts(inventory, ["web9"], {})

    def test_nothing_selected(self, inventory: Inventory):
        with pytest.raises(UserError, match="No hosts matched"):
            select_hosts(inventory, [], {"role": "cache"})


class TestResolveTasks:
    """Tests for resolve_tasks."""

    def make_task(self, name: str, **kwargs) -> Task:
        return Task.from_dict(name, {"commands": ["true"], **kwargs}, path=Path("p.toml"))

    def test_keeps_document_order(self, inventory: Inventory):
        tasks = [self.make_task("b"), self.make_task("a")]
        resolved = resolve_tasks([], tasks, inventory)
        assert [t.name for t, _ in resolved] == ["b", "a"]

    def test_named_tasks_keep_document_order(self, inventory: Inventory):
        """--task picks tasks but does not reorder them."""
        tasks = [self.make_task("b"), self.make_task("a"), self.make_task("c")]
        resolved = resolve_tasks(["c", "b"], tasks, inventory)
        assert [t.name for t, _ in resolved] == ["b", "c"]

    def test_unknown_task(self, inventory: Inventory):
        with pytest.raises(UserError, match="Unknown tasks: nope"):
            resolve_tasks(["nope"], [self.make_task("a")], inventory)

    def test_empty_task_skipped(self, inventory: Inventory, caplog):
        tasks = [self.make_task("cache", filter={"role": "cache"}), self.make_task("all")]
        with caplog.at_level(logging.WARNING, logger="gander"):
            resolved = resolve_tasks([], tasks, inventory)
        assert [t.name for t, _ in resolved] == ["all"]
        assert "no hosts matched" in caplog.text

    def test_doas_warns(self, inventory: Inventory, caplog):
        """doas is carried but not applied."""
        with caplog.at_level(logging.WARNING, logger="gander"):
            resolve_tasks([], [self.make_task("t", doas="root")], inventory)
        assert "doas=root is not applied" in caplog.text

    def test_unknown_task_host(self, inventory: Inventory):
        with pytest.raises(PlaybookError):
            resolve_tasks([], [self.make_task("t", hosts=["web1", "gone"])], inventory)


class TestLoadKey:
    """Tests for load_key and open_trust_store."""

    def test_env_passphrase(self, monkeypatch, tmp_dir: Path, admin_key):
        path = tmp_dir / "id"
        admin_key.write_private_key(str(path), passphrase="pw")
        monkeypatch.setenv(PASSPHRASE_ENV_VAR, "pw")
        assert load_key(make_args(key=str(path))).public_data == admin_key.public_data

    def test_env_wins_over_prompt(self, monkeypatch, mocker, tmp_dir: Path, admin_key):
        """The environment variable is used even with --ask-passphrase."""
        path = tmp_dir / "id"
        admin_key.write_private_key(str(path), passphrase="pw")
        monkeypatch.setenv(PASSPHRASE_ENV_VAR, "pw")
        prompt = mocker.patch("gander.commands.run.click.prompt")
        load_key(make_args(key=str(path), ask_passphrase=True))
        prompt.assert_not_called()

    def test_prompt(self, monkeypatch, mocker, tmp_dir: Path, admin_key):
        path = tmp_dir / "id"
        admin_key.write_private_key(str(path), passphrase="pw")
        monkeypatch.delenv(PASSPHRASE_ENV_VAR, raising=False)
        prompt = mocker.patch("gander.commands.run.click.prompt", return_value="pw")
        load_key(make_args(key=str(path), ask_passphrase=True))
        assert prompt.call_args.kwargs["hide_input"] is True

    def test_unencrypted(self, monkeypatch, tmp_dir: Path, admin_key):
        path = tmp_dir / "id"
        admin_key.write_private_key(str(path))
        monkeypatch.delenv(PASSPHRASE_ENV_VAR, raising=False)
        assert load_key(make_args(key=str(path))).public_data == admin_key.public_data

    def test_trust_store_path(self, tmp_dir: Path):
        store = open_trust_store(make_args(known_hosts=str(tmp_dir / "kh")))
        assert store.path == tmp_dir / "kh"

    def test_default_trust_store_path(self, monkeypatch, tmp_dir: Path):
        monkeypatch.setenv("HOME", str(tmp_dir))
        store = open_trust_store(make_args())
        assert store.path == tmp_dir / ".gander" / "known_hosts"


class TestFormatting:
    """Tests for report formatting."""

    def test_success_line(self, make_host):
        outcome = HostOutcome(make_host("web1"), OutcomeStatus.SUCCESS, exit_status=0, elapsed_s=2)
        assert format_outcome_line(outcome) == "✓ web1 (exit 0, 2s)"

    def test_nonzero_exit_line(self, make_host):
        outcome = HostOutcome(make_host("web1"), OutcomeStatus.SUCCESS, exit_status=7)
        assert format_outcome_line(outcome).startswith("⚠ web1 (exit 7")

    def test_failure_line(self, make_host):
        outcome = HostOutcome(
            make_host("web1"), OutcomeStatus.AUTH_FAILURE, error="permission denied", elapsed_s=65
        )
        assert format_outcome_line(outcome) == "✗ web1: auth_failure: permission denied (1m05s)"

    def test_quiet_all_ok(self, make_host):
        outcomes = [HostOutcome(make_host(), OutcomeStatus.SUCCESS, exit_status=0)] * 2
        assert format_quiet(summarize(outcomes), 3) == "✓ 2/2 hosts successful (3s)"

    def test_quiet_partial(self, make_host):
        outcomes = [
            HostOutcome(make_host(), OutcomeStatus.SUCCESS, exit_status=0),
            HostOutcome(make_host(), OutcomeStatus.CONNECT_FAILURE),
        ]
        assert format_quiet(summarize(outcomes), 0) == "⚠ 1/2 hosts successful (1 failed) (0s)"

    def test_quiet_all_failed(self, make_host):
        outcomes = [HostOutcome(make_host(), OutcomeStatus.CONNECT_FAILURE)]
        assert format_quiet(summarize(outcomes), 0).startswith("✗ 0/1")

    def test_summary_table(self, make_host):
        outcomes = [
            HostOutcome(make_host("a"), OutcomeStatus.SUCCESS, stdout="up 3 days\n", exit_status=0),
            HostOutcome(make_host("b"), OutcomeStatus.HOST_KEY_MISMATCH, error="changed"),
        ]
        table = format_summary_table(outcomes)
        assert "Total hosts:        2" in table
        assert "Successful:         1 (50.0%)" in table
        assert "host_key_mismatch:" in table
        assert "    up 3 days" in table
        assert "Endpoint:" not in table

    def test_summary_table_verbose(self, make_host):
        outcomes = [
            HostOutcome(
                make_host("a", "10.0.0.9", ssh_user="ops", ssh_port=2200),
                OutcomeStatus.SUCCESS,
                stderr="warning: x\n",
                exit_status=0,
            )
        ]
        table = format_summary_table(outcomes, verbose=True)
        assert "Endpoint: ops@10.0.0.9:2200" in table
        assert "      warning: x" in table

    def test_host_line(self, make_host):
        host = make_host("g/web1", "10.0.0.1", ssh_user="ops", role="web", site="ams")
        assert format_host_line(host) == "g/web1  ops@10.0.0.1:22  role=web site=ams"
