"""
Tests for the command line entry point.
"""

import pytest

from square_pos_sync import cli
from square_pos_sync import config as config_module


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    monkeypatch.setattr(cli, "colorama_init", lambda: None)


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setattr(config_module, "load_dotenv", lambda: None)
    monkeypatch.setenv("TENANT_ID", "acme")
    monkeypatch.setenv("SQUARE_ACCESS_TOKEN", "sq-token")
    monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@db.example.com/pos")
    return monkeypatch


class TestParser:

    def test_sync_entities(self):
        args = cli.build_parser().parse_args(["sync", "payments", "orders", "--lookback-hours", "6"])

        assert args.command == "sync"
        assert args.entities == ["payments", "orders"]
        assert args.lookback_hours == 6.0

    def test_sync_defaults_to_all(self):
        args = cli.build_parser().parse_args(["sync"])
        assert args.entities == []


class TestMain:

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == cli.EXIT_OK
        assert "square-pos-sync" in capsys.readouterr().out

    def test_missing_config(self, monkeypatch, capsys):
        monkeypatch.setattr(config_module, "load_dotenv", lambda: None)
        monkeypatch.delenv("TENANT_ID", raising=False)

        assert cli.main(["sync"]) == cli.EXIT_CONFIG
        assert "TENANT_ID" in capsys.readouterr().err

    def test_unknown_entity(self, env, capsys):
        assert cli.main(["sync", "widgets"]) == cli.EXIT_CONFIG
        assert "widgets" in capsys.readouterr().err

    def test_non_positive_lookback(self, env):
        assert cli.main(["sync", "payments", "--lookback-hours", "0"]) == cli.EXIT_CONFIG
