"""Hypervisor process launching and inspection for vmctl."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import List, Optional

try:
    import psutil  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("psutil is required but not installed") from exc

from vmctl.constants import START_TIME_TOLERANCE
from vmctl.exceptions import CommandError
from vmctl.models import ProcessHandle
from vmctl.utils import ensure_directory, log, utc_stamp


def process_start_time(pid: int) -> Optional[float]:
    """Return the OS creation time of ``pid``, or None if it cannot be read."""
    try:
        return psutil.Process(pid).create_time()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None


def is_alive(pid: Optional[int], started_at: Optional[float] = None) -> bool:
    """Return True if ``pid`` names a running process we may act on.

    Zombies count as dead. When ``started_at`` is given, a process whose
    creation time differs is a reused pid and also counts as dead, as does a
    process we are not allowed to inspect.
    """
    if not pid:
        return False
    try:
        proc = psutil.Process(pid)
        if not proc.is_running() or proc.status() == psutil.STATUS_ZOMBIE:
            return False
        if started_at is not None and abs(proc.create_time() - started_at) > START_TIME_TOLERANCE:
            return False
        return True
    except (psutil.NoSuchProcess, psutil.ZombieProcess, psutil.AccessDenied):
        return False


def reap(pid: int) -> None:
    """Collect the exit status of a child we spawned, if it has exited."""
    try:
        os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        pass


def latest_log(logs_dir: Path, vm_id: str) -> Optional[Path]:
    if not logs_dir.is_dir():
        return None
    candidates = sorted(logs_dir.glob(f"{vm_id}-*.log"))
    return candidates[-1] if candidates else None


class ProcessSupervisor:
    """Launches hypervisor processes detached from the control plane."""

    def start(self, vm_id: str, argv: List[str], logs_dir: Path) -> ProcessHandle:
        if not argv:
            raise CommandError(f"Empty command line for VM {vm_id}", vm_id)
        ensure_directory(logs_dir)
        log_path = logs_dir / f"{vm_id}-{utc_stamp()}.log"
        suffix = 1
        while log_path.exists():
            log_path = logs_dir / f"{vm_id}-{utc_stamp()}-{suffix}.log"
            suffix += 1

        log("INFO", f"Starting VM {vm_id}: {' '.join(argv)}")
        with open(log_path, "ab") as log_file:
            try:
                proc = subprocess.Popen(
                    argv,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                    close_fds=True,
                )
            except OSError as exc:
                raise CommandError(f"Failed to start {argv[0]} for VM {vm_id}: {exc}", vm_id) from exc
        # Only the pid and its start time outlive this call; the caller records them.
        log("SUCCESS", f"VM {vm_id} launched (PID {proc.pid}, log {log_path})")
        return ProcessHandle(pid=proc.pid, log_path=log_path, started_at=process_start_time(proc.pid))
