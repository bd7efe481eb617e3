"""Tests for ``python -m vmctl``."""

from __future__ import annotations

import runpy
import sys

import pytest


def _run_module(monkeypatch, *argv: str) -> int:
    monkeypatch.setattr(sys, "argv", ["vmctl", *argv])
    with pytest.raises(SystemExit) as exc:
        runpy.run_module("vmctl", run_name="__main__", alter_sys=True)
    return exc.value.code


class TestModuleEntrypoint:
    def test_lists_machines_from_command_line(self, clean_env, monkeypatch, capsys):
        assert _run_module(monkeypatch, "ps", "--all") == 0
        assert "No machines found" in capsys.readouterr().out

    def test_manager_error_becomes_exit_status_one(self, clean_env, monkeypatch, capsys):
        assert _run_module(monkeypatch, "inspect", "ghost") == 1
        assert "VM ghost not found" in capsys.readouterr().out

    def test_usage_error_is_reported_by_argparse(self, clean_env, monkeypatch, capsys):
        assert _run_module(monkeypatch, "reboot") == 2
        assert "invalid choice" in capsys.readouterr().err
