"""Shared test fixtures: isolated settings, registry, and throwaway guest processes."""

from __future__ import annotations

import os
import signal
import sys
import time
from pathlib import Path
from typing import List

import pytest

from vmctl.config import Settings
from vmctl.models import STATUS_STOPPED, MachineRecord
from vmctl.state import StateStore

# Stand-in for the hypervisor: a process that just sits there.
SLEEPER_ARGV = [sys.executable, "-c", "import time; time.sleep(120)"]


def stubborn_argv(ready_file: Path) -> List[str]:
    """A process that ignores SIGTERM and touches ``ready_file`` once the handler is installed."""
    script = (
        "import pathlib, signal, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        f"pathlib.Path({str(ready_file)!r}).touch()\n"
        "time.sleep(120)\n"
    )
    return [sys.executable, "-c", script]


def wait_for_file(path: Path, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise AssertionError(f"{path} did not appear")
        time.sleep(0.05)


def kill_quietly(pid: int) -> None:
    try:
        os.killpg(pid, signal.SIGKILL)
    except OSError:
        pass
    try:
        os.waitpid(pid, 0)
    except ChildProcessError:
        pass


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        home=tmp_path / "home",
        qemu_binary="qemu-system-x86_64",
        qemu_img_binary="qemu-img",
        enable_kvm=False,
        stop_grace=2.0,
        api_host="127.0.0.1",
        api_port=8890,
    )


@pytest.fixture
def store(settings) -> StateStore:
    return StateStore(settings.machines_dir)


@pytest.fixture
def make_record(settings):
    def _make(vm_id: str = "vm1", **overrides) -> MachineRecord:
        values = dict(
            id=vm_id,
            name=vm_id,
            status=STATUS_STOPPED,
            cpu="host",
            cpus=2,
            memory="2G",
            logs_dir=str(settings.logs_root / vm_id),
            created_at="2026-01-01T00:00:00Z",
            updated_at="2026-01-01T00:00:00Z",
            iso="/isos/freebsd.iso",
        )
        values.update(overrides)
        return MachineRecord(**values)

    return _make


@pytest.fixture
def spawned():
    """Collect pids started during a test and make sure none of them survive it."""
    pids: List[int] = []
    yield pids
    for pid in pids:
        kill_quietly(pid)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Clear every variable load_settings() reads and point VMCTL_HOME at a temp dir."""
    for key in (
        "VMCTL_QEMU",
        "VMCTL_QEMU_IMG",
        "VMCTL_STOP_GRACE",
        "VMCTL_API_HOST",
        "VMCTL_API_PORT",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("VMCTL_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("VMCTL_KVM", "0")
    return tmp_path / "home"
