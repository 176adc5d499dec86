"""Tests for the switchmon dispatcher and the sub-CLI argument handling."""

from __future__ import annotations

import json
import sys
from datetime import timedelta

import pytest

from switchmon import __main__ as dispatcher
from switchmon.config import MonitorConfig
from switchmon.history import cli as history_cli
from switchmon.history.store import HistoryStore
from switchmon.models import utcnow
from switchmon.sflow import cli as sflow_cli
from switchmon.snmp import cli as snmp_cli


class TestDispatcher:
    """Test the top-level command dispatcher."""

    def test_no_command_prints_usage_and_fails(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["switchmon"])
        with pytest.raises(SystemExit) as excinfo:
            dispatcher.main()
        assert excinfo.value.code == 1
        out = capsys.readouterr().out
        for command in ("poll", "sflow", "history"):
            assert command in out

    def test_help_exits_zero(self, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["switchmon", "--help"])
        with pytest.raises(SystemExit) as excinfo:
            dispatcher.main()
        assert excinfo.value.code == 0

    def test_unknown_command(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["switchmon", "vlan"])
        with pytest.raises(SystemExit) as excinfo:
            dispatcher.main()
        assert excinfo.value.code == 1
        assert "unknown command 'vlan'" in capsys.readouterr().err

    def test_dispatches_remaining_args(self, monkeypatch, tmp_path, capsys):
        monkeypatch.setattr(sys, "argv", ["switchmon", "history", "--dir", str(tmp_path), "--cleanup"])
        dispatcher.main()
        assert "Removed 0 day file(s)" in capsys.readouterr().out

    def test_commands_point_at_modules_with_main(self):
        from importlib import import_module

        for module_path, _ in dispatcher.COMMANDS.values():
            assert callable(import_module(module_path).main)

    def test_startup_rows_show_command_and_config(self, tmp_path):
        config = tmp_path / "switches.json"
        config.write_text("{}")
        rows = dict(dispatcher.startup_rows(["poll", "-c", str(config)]))
        assert rows["command"] == "poll"
        assert rows["config"] == str(config)
        assert "python" not in rows

    def test_startup_rows_flag_missing_config(self, monkeypatch, tmp_path):
        """Without ``-c`` poll shows the environment config and marks it when absent."""
        monkeypatch.setenv("SWITCHMON_CONFIG", str(tmp_path / "nope.json"))
        rows = dict(dispatcher.startup_rows(["poll", "-n", "3"]))
        assert rows["command"] == "poll"
        assert rows["config"] == f"{tmp_path / 'nope.json'} (missing)"

    def test_startup_rows_without_command(self):
        assert dict(dispatcher.startup_rows([]))["command"] == "-"

    def test_startup_rows_sflow_without_config(self, monkeypatch):
        monkeypatch.setenv("SWITCHMON_CONFIG", "switchmon.json")
        assert dict(dispatcher.startup_rows(["sflow", "--port", "6343"]))["config"] == "-"


class TestPollCli:
    """Test the SNMP poll sub-CLI."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SWITCHMON_CONFIG", raising=False)
        args = snmp_cli.parse_args([])
        assert args.config == "switchmon.json"
        assert args.rounds == 0
        assert args.diagnose is None
        assert args.no_history is False

    def test_config_from_environment(self, monkeypatch):
        monkeypatch.setenv("SWITCHMON_CONFIG", "/etc/switchmon.json")
        assert snmp_cli.parse_args([]).config == "/etc/switchmon.json"

    def test_options(self):
        args = snmp_cli.parse_args(["-c", "x.json", "-n", "3", "--diagnose", "core-sw1", "--no-history", "-v"])
        assert (args.config, args.rounds, args.diagnose, args.no_history, args.verbose) == (
            "x.json",
            3,
            "core-sw1",
            True,
            True,
        )

    def test_missing_config_exits(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            snmp_cli.main(["-c", str(tmp_path / "missing.json")])
        assert excinfo.value.code == 1

    def test_no_switches_exits(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text(json.dumps({"Switches": []}))
        with pytest.raises(SystemExit) as excinfo:
            snmp_cli.main(["-c", str(path)])
        assert excinfo.value.code == 1


class TestSFlowCli:
    """Test the sFlow sub-CLI."""

    def test_defaults_keep_config_settings(self):
        config = MonitorConfig.model_validate({"SFlowPort": 9999, "SFlowBindIP": "127.0.0.1"})
        settings = sflow_cli._settings(sflow_cli.parse_args([]), config)
        assert settings.port == 9999
        assert settings.bind_address == "127.0.0.1"
        assert settings.debug is False
        assert settings.dump_first_n == 0

    def test_overrides(self):
        parsed = sflow_cli.parse_args(["-p", "7000", "-b", "::", "--dump-first", "5", "-v"])
        settings = sflow_cli._settings(parsed, MonitorConfig())
        assert settings.port == 7000
        assert settings.bind_address == "::"
        assert settings.dump_first_n == 5
        assert settings.debug is True

    def test_interval_default(self):
        assert sflow_cli.parse_args([]).interval == 10.0


class TestHistoryCli:
    """Test the history sub-CLI."""

    def test_prints_records(self, tmp_path, capsys):
        store = HistoryStore(tmp_path)
        ts = utcnow() - timedelta(minutes=5)
        store.append("10.0.0.1", 3, ts, 2_500_000.0, 1_000.0, 0.25, 0.0, "1000000000")

        history_cli.main(["10.0.0.1", "3", "--dir", str(tmp_path)])

        out = capsys.readouterr().out
        assert "2.50Mbps" in out
        assert "1G" in out

    def test_no_records(self, tmp_path, capsys):
        history_cli.main(["10.0.0.1", "3", "--dir", str(tmp_path)])
        assert "No history for 10.0.0.1 if3" in capsys.readouterr().out

    def test_requires_ip_and_index(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            history_cli.main(["--dir", str(tmp_path)])
        assert excinfo.value.code == 2

    def test_cleanup(self, tmp_path, capsys):
        store = HistoryStore(tmp_path)
        store.append("10.0.0.1", 1, utcnow() - timedelta(days=40), 1, 0, 0, 0, "")
        history_cli.main(["--dir", str(tmp_path), "--cleanup"])
        assert "Removed 1 day file(s)" in capsys.readouterr().out
