# tests/unit/test_unit_main.py - v1
"""Tests for the resilientai CLI."""

from __future__ import annotations

import asyncio
import json

import pytest

from resilientai.main import main
from resilientai.storage.json_state_store import JsonStateStore
from resilientai.storage.models import PreservedState, state_key


@pytest.fixture
def state_root(tmp_path, monkeypatch):
    root = tmp_path / "state"
    monkeypatch.setenv("STATE_BACKEND", "json")
    monkeypatch.setenv("STATE_ROOT", str(root))
    monkeypatch.chdir(tmp_path)
    return root


def _preserve(root, op_id: str) -> None:
    state = PreservedState(operation_id=op_id, context={"scene": "forest"}, timestamp=1.0, reason="timeout")
    asyncio.run(JsonStateStore(root).save(state_key(op_id), state))


class TestParser:
    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "resilientai" in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "simulate" in capsys.readouterr().out


class TestSimulate:
    def test_all_primary_or_cached(self, capsys, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        code = main([
            "simulate", "-n", "6", "--prompts", "3", "-f", "0",
            "--timeout", "0.2", "--seed", "1",
        ])
        assert code == 0
        report = json.loads(capsys.readouterr().out)
        outcomes = report["outcomes"]
        assert outcomes["primary"] >= 1
        assert outcomes["primary"] + outcomes["cache"] == 6
        assert outcomes["fallback"] == outcomes["failed"] == 0
        assert report["stats"]["total_fallbacks"] == 0

    def test_always_failing_backend_degrades(self, capsys, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        code = main([
            "simulate", "-n", "3", "-f", "1", "-s", "degraded_function",
            "--timeout", "0.2", "--retry-delay", "0", "--seed", "1",
        ])
        assert code == 0
        report = json.loads(capsys.readouterr().out)
        assert report["outcomes"]["fallback"] == 3
        assert report["stats"]["fallback_reason_histogram"] == {
            "network_error": 1, "service_unhealthy": 2,
        }

    def test_cached_strategy_failures_are_counted(self, capsys, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        code = main([
            "simulate", "-n", "2", "-f", "1", "-s", "cached_result",
            "--timeout", "0.2", "--retry-delay", "0",
        ])
        assert code == 0
        assert json.loads(capsys.readouterr().out)["outcomes"]["failed"] == 2

    def test_rejects_bad_failure_rate(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        assert main(["simulate", "-f", "2"]) == 1


class TestPreserved:
    def test_list_empty(self, state_root, capsys):
        assert main(["preserved", "list"]) == 0
        assert "No preserved operations" in capsys.readouterr().out

    def test_list_and_show(self, state_root, capsys):
        _preserve(state_root, "op-1")
        assert main(["preserved", "list"]) == 0
        assert "op-1" in capsys.readouterr().out

        assert main(["preserved", "show", "op-1"]) == 0
        shown = json.loads(capsys.readouterr().out)
        assert shown["context"] == {"scene": "forest"}

    def test_show_missing(self, state_root):
        assert main(["preserved", "show", "nope"]) == 1

    def test_clear(self, state_root, capsys):
        _preserve(state_root, "op-1")
        _preserve(state_root, "op-2")
        assert main(["preserved", "clear", "op-1"]) == 0
        assert "Cleared 1" in capsys.readouterr().out
        assert main(["preserved", "clear"]) == 0
        assert "Cleared 1" in capsys.readouterr().out
        assert list(state_root.glob("*.json")) == []

    def test_preserved_without_subcommand(self, state_root):
        assert main(["preserved"]) == 1
