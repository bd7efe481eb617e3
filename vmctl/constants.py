"""Global constants and path configuration for vmctl."""

from __future__ import annotations

import os
import re
from pathlib import Path

# Overridden by VMCTL_HOME; holds the registry, logs and drive images.
DEFAULT_HOME = Path.home() / ".vmctl"
MACHINES_SUBDIR = "machines"
LOGS_SUBDIR = "logs"
IMAGES_SUBDIR = "images"
CONFIG_FILE_NAME = "config.yaml"

TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_QEMU_BINARY = "qemu-system-x86_64"
DEFAULT_QEMU_IMG_BINARY = "qemu-img"
DEFAULT_CPU_MODEL = "host"
DEFAULT_CPUS = 2
DEFAULT_MEMORY = "2G"
DEFAULT_DISK_FORMAT = "qcow2"
DEFAULT_DISK_SIZE = "20G"
DEFAULT_STOP_GRACE = 3.0
# Max drift between a stored process start time and the one the OS reports.
START_TIME_TOLERANCE = 2.0
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 8890
NIC_MODEL = "e1000"

MEMORY_RE = re.compile(r"^[0-9]+(M|G)$")
PORT_FORWARD_RE = re.compile(r"^[0-9]+:[0-9]+$")
DISK_SIZE_RE = re.compile(r"^[0-9]+[KMGTkmgt]?$")

SUPPORTED_DISK_FORMATS = {"qcow2", "raw", "vmdk", "vdi", "vhdx"}

# Searched in order; the first existing code image wins.
OVMF_CODE_PATHS = (
    Path("/usr/share/OVMF/OVMF_CODE_4M.fd"),
    Path("/usr/share/OVMF/OVMF_CODE.fd"),
    Path("/usr/share/qemu/OVMF.fd"),
    Path("/usr/share/edk2/x64/OVMF_CODE.fd"),
    Path("/opt/homebrew/share/qemu/edk2-x86_64-code.fd"),
)

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
