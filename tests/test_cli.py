"""Tests for the command line interface."""

import json
import logging
import sys

import pytest

from confmirror.__main__ import JSONLineFormatter, build_parser, main, parse_value, resolve_level


@pytest.fixture
def local_env(monkeypatch, tmp_path):
    """Point the CLI at a temporary SQLite store and the memory transport."""
    monkeypatch.setenv("CONFMIRROR_STORE_BACKEND", "sqlite")
    monkeypatch.setenv("CONFMIRROR_STORE_DB_PATH", str(tmp_path / "registry.db"))
    monkeypatch.setenv("CONFMIRROR_TRANSPORT_BACKEND", "memory")
    monkeypatch.setenv("CONFMIRROR_NAMESPACE", "cli-test")
    return tmp_path


class TestParseValue:
    def test_json_values(self):
        assert parse_value("42") == 42
        assert parse_value('{"a": [1]}') == {"a": [1]}
        assert parse_value("null") is None

    def test_plain_string_fallback(self):
        assert parse_value("hello world") == "hello world"


class TestLogging:
    def test_level_flags(self):
        assert resolve_level(False, None) == logging.WARNING
        assert resolve_level(True, None) == logging.DEBUG
        assert resolve_level(True, "info") == logging.INFO

    def test_json_line_includes_extra_fields(self):
        record = logging.makeLogRecord({
            "name": "confmirror.registry",
            "levelno": logging.INFO,
            "levelname": "INFO",
            "msg": "pulled %d keys",
            "args": (3,),
            "namespace": "team",
        })

        entry = json.loads(JSONLineFormatter().format(record))

        assert entry["level"] == "info"
        assert entry["logger"] == "confmirror.registry"
        assert entry["msg"] == "pulled 3 keys"
        assert entry["namespace"] == "team"
        assert "args" not in entry

    def test_json_line_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.makeLogRecord({"msg": "failed", "exc_info": sys.exc_info()})

        entry = json.loads(JSONLineFormatter().format(record))

        assert "RuntimeError: boom" in entry["exc"]


class TestParser:
    def test_set_arguments(self):
        args = build_parser().parse_args(["set", "timeout", "30"])

        assert args.command == "set"
        assert args.key == "timeout"
        assert args.value == "30"

    def test_watch_keys_optional(self):
        args = build_parser().parse_args(["watch"])

        assert args.keys == []

    def test_no_command(self, capsys):
        assert main([]) == 1


class TestCommands:
    """Tests for commands against a local SQLite store."""

    def test_set_get_clear(self, local_env, capsys):
        """Test values written by one invocation are read by the next."""
        assert main(["set", "timeout", "30"]) == 0
        assert main(["get", "timeout"]) == 0
        assert capsys.readouterr().out.strip() == "30"

        assert main(["clear", "timeout"]) == 0
        assert main(["get", "timeout"]) == 1
        assert "Key not set" in capsys.readouterr().err

    def test_get_default(self, local_env, capsys):
        assert main(["get", "missing", "--default", "fallback"]) == 0

        assert capsys.readouterr().out.strip() == '"fallback"'

    def test_dump(self, local_env, capsys):
        main(["set", "a", "1"])
        main(["set", "b", '["x"]'])
        capsys.readouterr()

        assert main(["dump"]) == 0

        assert json.loads(capsys.readouterr().out) == {"a": 1, "b": ["x"]}

    def test_status(self, local_env, capsys):
        assert main(["status", "--json"]) == 0

        status = json.loads(capsys.readouterr().out)
        assert status["namespace"] == "cli-test"
        assert status["store"]["connected"] is True
        assert status["transport"]["connected"] is True

    def test_unreachable_store(self, local_env, monkeypatch, capsys):
        """Test commands fail cleanly when the store cannot be opened."""
        monkeypatch.setenv("CONFMIRROR_STORE_DB_PATH", str(local_env))

        assert main(["get", "a"]) == 1
        assert "could not load namespace" in capsys.readouterr().err
