"""Hypervisor termination for vmctl."""

from __future__ import annotations

import os
import signal
import time

from vmctl.constants import DEFAULT_STOP_GRACE
from vmctl.exceptions import StopCommandError
from vmctl.models import MachineRecord
from vmctl.supervisor import is_alive, reap
from vmctl.utils import log, utc_now

KILL_CONFIRM_TIMEOUT = 2.0


class StopController:
    """Terminate a machine's process group: SIGTERM, bounded wait, then SIGKILL."""

    def __init__(self, grace_period: float = DEFAULT_STOP_GRACE, poll_interval: float = 0.1) -> None:
        self.grace_period = grace_period
        self.poll_interval = poll_interval

    def _wait_for_exit(self, record: MachineRecord, timeout: float) -> bool:
        pid = record.pid
        if pid is None:
            return True
        deadline = time.monotonic() + timeout
        while True:
            reap(pid)
            if not is_alive(pid, record.started_at):
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.poll_interval)

    def _signal_group(self, record: MachineRecord, sig: signal.Signals) -> bool:
        """Send ``sig`` to the process group. Returns False if the process is already gone."""
        pid = record.pid
        if pid is None:
            return False
        try:
            pgid = os.getpgid(pid)
        except ProcessLookupError:
            return False
        try:
            if pgid == pid:
                os.killpg(pgid, sig)
            else:
                # not a group leader; never signal a group we do not own
                os.kill(pid, sig)
        except ProcessLookupError:
            return False
        except PermissionError as exc:
            raise StopCommandError(
                f"Failed to stop VM {record.name} ({record.id}): permission denied sending {sig.name} to PID {pid}",
                record.id,
            ) from exc
        return True

    def stop(self, record: MachineRecord) -> MachineRecord:
        """Return ``record`` marked STOPPED once its process is confirmed gone."""
        pid = record.pid
        if not pid or not is_alive(pid, record.started_at):
            log("INFO", f"VM {record.id} is not running")
            return record.as_stopped(utc_now())

        log("INFO", f"Stopping VM {record.id} (PID {pid})")
        if self._signal_group(record, signal.SIGTERM) and not self._wait_for_exit(record, self.grace_period):
            log("WARN", f"VM {record.id} did not exit within {self.grace_period:g}s; sending SIGKILL")
            if self._signal_group(record, signal.SIGKILL):
                self._wait_for_exit(record, KILL_CONFIRM_TIMEOUT)

        if is_alive(pid, record.started_at):
            raise StopCommandError(f"Failed to stop VM {record.name} ({record.id}): PID {pid} is still alive", record.id)
        log("SUCCESS", f"VM {record.id} stopped")
        return record.as_stopped(utc_now())
