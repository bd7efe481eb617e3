"""Tests for vmctl.stop module."""

from __future__ import annotations

import os
import signal
import time
from unittest.mock import patch

import pytest

from tests.conftest import SLEEPER_ARGV, stubborn_argv, wait_for_file
from vmctl.exceptions import StopCommandError
from vmctl.models import STATUS_RUNNING, STATUS_STOPPED
from vmctl.stop import StopController
from vmctl.supervisor import ProcessSupervisor, is_alive


def _running(make_record, tmp_path, argv, spawned):
    handle = ProcessSupervisor().start("vm1", argv, tmp_path / "logs")
    spawned.append(handle.pid)
    return make_record(status=STATUS_RUNNING, pid=handle.pid, started_at=handle.started_at)


class TestAlreadyStopped:
    def test_no_pid_is_success_without_signals(self, make_record):
        with patch("vmctl.stop.os.killpg") as mock_killpg, patch("vmctl.stop.os.kill") as mock_kill:
            result = StopController().stop(make_record())
        assert result.status == STATUS_STOPPED
        assert result.pid is None
        mock_killpg.assert_not_called()
        mock_kill.assert_not_called()

    def test_dead_pid_is_success(self, make_record):
        record = make_record(status=STATUS_RUNNING, pid=4242)
        with patch("vmctl.stop.is_alive", return_value=False), patch("vmctl.stop.os.killpg") as mock_killpg:
            result = StopController().stop(record)
        assert result.status == STATUS_STOPPED
        assert result.pid is None
        mock_killpg.assert_not_called()

    def test_reused_pid_is_not_signalled(self, make_record, tmp_path, spawned):
        handle = ProcessSupervisor().start("other", list(SLEEPER_ARGV), tmp_path / "logs")
        spawned.append(handle.pid)
        record = make_record(status=STATUS_RUNNING, pid=handle.pid, started_at=handle.started_at - 1000)
        with patch("vmctl.stop.os.killpg") as mock_killpg, patch("vmctl.stop.os.kill") as mock_kill:
            result = StopController().stop(record)
        assert result.status == STATUS_STOPPED
        mock_killpg.assert_not_called()
        mock_kill.assert_not_called()
        assert is_alive(handle.pid)


class TestStopRunning:
    def test_graceful_termination(self, make_record, tmp_path, spawned):
        record = _running(make_record, tmp_path, list(SLEEPER_ARGV), spawned)
        assert record.started_at is not None
        started = time.monotonic()
        result = StopController(grace_period=5.0).stop(record)
        assert time.monotonic() - started < 5.0
        assert not is_alive(record.pid)
        assert result.status == STATUS_STOPPED
        assert result.pid is None
        assert result.id == record.id

    def test_escalates_to_sigkill(self, make_record, tmp_path, spawned):
        ready = tmp_path / "ready"
        record = _running(make_record, tmp_path, stubborn_argv(ready), spawned)
        wait_for_file(ready)
        sent = []
        real_killpg = os.killpg

        def recording_killpg(pgid, sig):
            sent.append(sig)
            real_killpg(pgid, sig)

        with patch("vmctl.stop.os.killpg", side_effect=recording_killpg):
            result = StopController(grace_period=0.3).stop(record)
        assert sent == [signal.SIGTERM, signal.SIGKILL]
        assert not is_alive(record.pid)
        assert result.status == STATUS_STOPPED

    def test_unconfirmed_termination_raises(self, make_record, monkeypatch):
        monkeypatch.setattr("vmctl.stop.KILL_CONFIRM_TIMEOUT", 0.05)
        record = make_record(status=STATUS_RUNNING, pid=4242)
        with patch("vmctl.stop.is_alive", return_value=True), patch(
            "vmctl.stop.os.getpgid", return_value=4242
        ), patch("vmctl.stop.os.killpg") as mock_killpg, patch("vmctl.stop.reap"):
            with pytest.raises(StopCommandError, match="vm1") as exc:
                StopController(grace_period=0.05, poll_interval=0.01).stop(record)
        assert exc.value.vm_id == "vm1"
        assert [c.args[1] for c in mock_killpg.call_args_list] == [signal.SIGTERM, signal.SIGKILL]

    def test_permission_denied(self, make_record):
        record = make_record(status=STATUS_RUNNING, pid=1)
        with patch("vmctl.stop.is_alive", return_value=True), patch(
            "vmctl.stop.os.getpgid", return_value=1
        ), patch("vmctl.stop.os.killpg", side_effect=PermissionError):
            with pytest.raises(StopCommandError, match="permission denied"):
                StopController().stop(record)

    def test_process_vanishing_between_checks(self, make_record):
        record = make_record(status=STATUS_RUNNING, pid=4242)
        alive = iter([True, False])
        with patch("vmctl.stop.is_alive", side_effect=lambda pid, started_at=None: next(alive)), patch(
            "vmctl.stop.os.getpgid", side_effect=ProcessLookupError
        ):
            result = StopController().stop(record)
        assert result.status == STATUS_STOPPED

    def test_non_leader_gets_plain_kill(self, make_record):
        record = make_record(status=STATUS_RUNNING, pid=4242)
        alive = iter([True, False, False])
        with patch("vmctl.stop.is_alive", side_effect=lambda pid, started_at=None: next(alive)), patch(
            "vmctl.stop.os.getpgid", return_value=100
        ), patch("vmctl.stop.os.killpg") as mock_killpg, patch("vmctl.stop.os.kill") as mock_kill, patch(
            "vmctl.stop.reap"
        ):
            StopController().stop(record)
        mock_killpg.assert_not_called()
        mock_kill.assert_called_once_with(4242, signal.SIGTERM)
