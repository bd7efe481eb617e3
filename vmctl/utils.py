"""Utility functions for vmctl."""

from __future__ import annotations

import os
import subprocess
import time
import uuid
from pathlib import Path
from typing import Iterable, List, Optional

from vmctl.constants import (
    _LOG_VERBOSE,
    _SAFE_ID_RE,
    DISK_SIZE_RE,
    MEMORY_RE,
    PORT_FORWARD_RE,
    TRUTHY,
)
from vmctl.exceptions import ManagerError, ValidationError
from vmctl.models import PortForward


def log(level: str, message: str) -> None:
    """Lightweight structured logging compatible with existing colour expectation."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY


def parse_int_env(name: str, default: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = int(raw)
    except ValueError:
        raise ManagerError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ManagerError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ManagerError(f"{name} must be <= {max_val} (got {value})")
    return value


def parse_float_env(name: str, default: str, min_val: float = 0.0) -> float:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = float(raw)
    except ValueError:
        raise ManagerError(f"{name} must be a number (got '{raw}')")
    if value < min_val:
        raise ManagerError(f"{name} must be >= {min_val} (got {value})")
    return value


def validate_memory(raw: str) -> str:
    if not isinstance(raw, str) or not MEMORY_RE.fullmatch(raw):
        raise ValidationError(f"Invalid memory '{raw}'. Use a number followed by M or G (e.g. '2G')")
    return raw


def validate_cpus(raw) -> int:
    # bool is an int subclass; "true" is not a cpu count
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 1:
        raise ValidationError(f"Invalid cpu count '{raw}'. Must be a positive integer")
    return raw


def validate_disk_size(raw: str) -> str:
    if not DISK_SIZE_RE.fullmatch(raw):
        raise ValidationError(
            f"Invalid disk size '{raw}'. Use a number with optional suffix: K, M, G, T (e.g. '20G')"
        )
    return raw


def parse_port_forward(raw: str) -> PortForward:
    if not isinstance(raw, str) or not PORT_FORWARD_RE.fullmatch(raw):
        raise ValidationError(f"Invalid port forward '{raw}'. Use HOST:GUEST (e.g. '2222:22')")
    host, guest = raw.split(":", 1)
    return PortForward(int(host), int(guest))


def validate_port_forwards(entries: Iterable[str]) -> List[str]:
    """Validate every entry and return them as a list in their original order."""
    result = []
    for entry in entries:
        parse_port_forward(entry)
        result.append(entry)
    return result


def validate_machine_id(raw: str) -> str:
    # ids become file names in the registry directory
    if not raw or not _SAFE_ID_RE.fullmatch(raw):
        raise ValidationError(f"Invalid machine id '{raw}'. Use letters, digits, '.', '_' or '-'")
    return raw


def generate_machine_id() -> str:
    return uuid.uuid4().hex[:12]


def utc_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def utc_stamp() -> str:
    """Compact timestamp used in file names."""
    return time.strftime("%Y%m%dT%H%M%SZ", time.gmtime())


def kvm_available() -> bool:
    """Return True if /dev/kvm exists and can be opened."""
    kvm_path = Path("/dev/kvm")
    if not kvm_path.exists():
        return False
    try:
        fd = os.open(kvm_path, os.O_RDONLY)
    except OSError:
        return False
    else:
        os.close(fd)
        return True


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
