"""Tests for the Typer CLI."""

import json
import logging
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

import netbuf.logging_setup as ls
from conftest import FakeStore, make_snapshot
from netbuf.cli.app import app
from netbuf.core.params import read_parameters
from netbuf.models.runtime import Snapshot

runner = CliRunner()


@pytest.fixture(autouse=True)
def use_tmp_dir(tmp_path, monkeypatch):
    """Run CLI commands in a temp directory so .netbuf/ backups are isolated."""
    monkeypatch.chdir(tmp_path)
    yield
    # the CLI binds a handler to the runner's stderr; drop it
    ls._CONFIGURED = False
    logger = logging.getLogger("netbuf")
    logger.handlers.clear()
    logger.propagate = True


@pytest.fixture
def healthy():
    with patch("netbuf.cli.app.capture_snapshot", return_value=make_snapshot()) as mock:
        yield mock


@pytest.fixture
def root():
    with patch("netbuf.cli.app.os.geteuid", return_value=0):
        yield


@pytest.fixture
def fake_store():
    store = FakeStore()
    with patch("netbuf.cli.app._store", return_value=store), patch(
        "netbuf.cli.app.capture_snapshot",
        side_effect=lambda **kw: Snapshot(parameters=read_parameters(store)),
    ):
        yield store


class TestCheck:
    def test_healthy_exits_zero(self, healthy):
        result = runner.invoke(app, ["check"])
        assert result.exit_code == 0
        assert "0 critical" in result.output

    def test_critical_exits_one(self):
        snap = make_snapshot(params={"net.core.rmem_max": "212992"})
        with patch("netbuf.cli.app.capture_snapshot", return_value=snap):
            result = runner.invoke(app, ["check"])
        assert result.exit_code == 1
        assert "1 critical" in result.output
        assert "net.core.rmem_max = 16777216" in result.output

    def test_json(self, healthy):
        result = runner.invoke(app, ["check", "--json"])
        assert result.exit_code == 0
        report = json.loads(result.stdout)
        assert report["summary"]["critical"] == 0
        assert report["findings"][0]["check_id"] == "integrity.parameters"

    def test_limit_overrides_config(self, healthy):
        runner.invoke(app, ["check", "--limit", "5"])
        config = healthy.call_args.kwargs["config"]
        assert config.reader.connection_sample_limit == 5

    def test_verbose(self, healthy):
        result = runner.invoke(app, ["--verbose", "check"])
        assert result.exit_code == 0
        assert logging.getLogger("netbuf").level == logging.DEBUG


class TestProfiles:
    def test_table(self):
        result = runner.invoke(app, ["profiles"])
        assert result.exit_code == 0
        assert "Tuning Profiles" in result.output

    def test_json(self):
        result = runner.invoke(app, ["profiles", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [p["id"] for p in data][0] == "message-delivery-backend"
        assert data[3]["recommended"]["net.ipv4.tcp_rmem"] == "4096 4194304 16777216"


class TestPlan:
    def test_apply_now_commands(self, healthy):
        result = runner.invoke(app, ["plan", "file-transfer-internet"])
        assert result.exit_code == 0
        assert "sysctl -w 'net.ipv4.tcp_rmem=4096 4194304 16777216'" in result.stdout

    def test_persist_mode(self, healthy):
        result = runner.invoke(app, ["plan", "file-transfer-internet", "--mode", "persist"])
        assert result.exit_code == 0
        assert "/etc/sysctl.d/99-netbuf-file-transfer-internet.conf" in result.stdout

    def test_json(self, healthy):
        result = runner.invoke(app, ["plan", "message-delivery-backend", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["profile_id"] == "message-delivery-backend"
        assert data["mode"] == "apply-now"
        assert data["actions"]

    def test_unknown_profile(self, healthy):
        result = runner.invoke(app, ["plan", "nope"])
        assert result.exit_code == 2
        assert "Unknown profile" in result.output

    def test_changes_nothing(self, fake_store):
        runner.invoke(app, ["plan", "file-transfer-internet"])
        assert fake_store.writes == []


class TestApply:
    def test_requires_root(self, fake_store):
        with patch("netbuf.cli.app.os.geteuid", return_value=1000):
            result = runner.invoke(app, ["apply", "file-transfer-internet", "--yes"])
        assert result.exit_code == 1
        assert "root" in result.output
        assert fake_store.writes == []

    def test_apply_writes_backup_first(self, fake_store, root, tmp_path):
        before = fake_store.export()
        result = runner.invoke(app, ["apply", "file-transfer-internet", "--yes"])
        assert result.exit_code == 0, result.output
        backups = list((tmp_path / ".netbuf" / "backups").glob("*-file-transfer-internet.conf"))
        assert len(backups) == 1
        assert backups[0].read_text() == before
        assert fake_store.values["net.ipv4.tcp_rmem"] == "4096 4194304 16777216"
        assert "netbuf rollback" in result.output

    def test_declined_confirmation(self, fake_store, root):
        result = runner.invoke(app, ["apply", "file-transfer-internet"], input="n\n")
        assert result.exit_code == 1
        assert fake_store.writes == []

    def test_already_matching(self, root):
        store = FakeStore()
        with patch("netbuf.cli.app._store", return_value=store), patch(
            "netbuf.cli.app.capture_snapshot",
            return_value=make_snapshot(params={
                "net.core.rmem_default": "4194304",
                "net.core.wmem_default": "4194304",
                "net.ipv4.tcp_rmem": "4096 4194304 16777216",
                "net.ipv4.tcp_wmem": "4096 4194304 16777216",
            }),
        ):
            result = runner.invoke(app, ["apply", "file-transfer-internet", "--yes"])
        assert result.exit_code == 0
        assert "nothing to do" in result.output
        assert store.writes == []

    def test_partial_failure(self, root, tmp_path):
        store = FakeStore(fail_writes={"net.ipv4.tcp_wmem"})
        with patch("netbuf.cli.app._store", return_value=store), patch(
            "netbuf.cli.app.capture_snapshot",
            side_effect=lambda **kw: Snapshot(parameters=read_parameters(store)),
        ):
            result = runner.invoke(app, ["apply", "file-transfer-internet", "--yes"])
        assert result.exit_code == 1
        assert "net.ipv4.tcp_wmem" in result.output
        assert "netbuf rollback" in result.output
        assert list((tmp_path / ".netbuf" / "backups").glob("*.conf"))


class TestRollback:
    def test_restores(self, fake_store, root, tmp_path):
        backup = tmp_path / "backup.conf"
        backup.write_text("net.core.rmem_max = 212992\n")
        result = runner.invoke(app, ["rollback", str(backup)])
        assert result.exit_code == 0
        assert fake_store.values["net.core.rmem_max"] == "212992"

    def test_missing_file(self, fake_store, root, tmp_path):
        result = runner.invoke(app, ["rollback", str(tmp_path / "nope.conf")])
        assert result.exit_code == 1

    def test_garbage_file(self, fake_store, root, tmp_path):
        backup = tmp_path / "bad.conf"
        backup.write_text("not a sysctl line\n")
        result = runner.invoke(app, ["rollback", str(backup)])
        assert result.exit_code == 1
        assert "Rollback failed" in result.output
