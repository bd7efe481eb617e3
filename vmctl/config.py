"""Configuration loading and environment variable parsing for vmctl."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vmctl.constants import (
    CONFIG_FILE_NAME,
    DEFAULT_API_HOST,
    DEFAULT_API_PORT,
    DEFAULT_CPU_MODEL,
    DEFAULT_CPUS,
    DEFAULT_HOME,
    DEFAULT_MEMORY,
    DEFAULT_QEMU_BINARY,
    DEFAULT_QEMU_IMG_BINARY,
    DEFAULT_STOP_GRACE,
    IMAGES_SUBDIR,
    LOGS_SUBDIR,
    MACHINES_SUBDIR,
)
from vmctl.exceptions import ManagerError
from vmctl.utils import (
    get_env,
    get_env_bool,
    kvm_available,
    log,
    parse_float_env,
    parse_int_env,
    validate_cpus,
    validate_memory,
)


@dataclass
class Settings:
    home: Path
    qemu_binary: str
    qemu_img_binary: str
    enable_kvm: bool
    stop_grace: float
    api_host: str
    api_port: int
    default_cpu: str = DEFAULT_CPU_MODEL
    default_cpus: int = DEFAULT_CPUS
    default_memory: str = DEFAULT_MEMORY

    @property
    def machines_dir(self) -> Path:
        return self.home / MACHINES_SUBDIR

    @property
    def logs_root(self) -> Path:
        return self.home / LOGS_SUBDIR

    @property
    def images_dir(self) -> Path:
        return self.home / IMAGES_SUBDIR


def load_defaults_file(path: Path) -> Dict[str, Any]:
    """Read the optional YAML defaults file; a missing file yields no overrides."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ManagerError(f"Invalid config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ManagerError(f"Config file {path} must contain a mapping")
    defaults = data.get("defaults", {}) or {}
    if not isinstance(defaults, dict):
        raise ManagerError(f"'defaults' in {path} must be a mapping")
    return defaults


def load_settings(home: Optional[Path] = None) -> Settings:
    if home is None:
        home = Path(get_env("VMCTL_HOME") or str(DEFAULT_HOME)).expanduser()

    kvm_raw = get_env("VMCTL_KVM")
    if kvm_raw is None:
        enable_kvm = kvm_available()
        if not enable_kvm:
            log("DEBUG", "/dev/kvm not usable; hypervisor will run without -enable-kvm")
    else:
        enable_kvm = get_env_bool("VMCTL_KVM")

    settings = Settings(
        home=home,
        qemu_binary=get_env("VMCTL_QEMU", DEFAULT_QEMU_BINARY) or DEFAULT_QEMU_BINARY,
        qemu_img_binary=get_env("VMCTL_QEMU_IMG", DEFAULT_QEMU_IMG_BINARY) or DEFAULT_QEMU_IMG_BINARY,
        enable_kvm=enable_kvm,
        stop_grace=parse_float_env("VMCTL_STOP_GRACE", str(DEFAULT_STOP_GRACE)),
        api_host=(get_env("VMCTL_API_HOST") or DEFAULT_API_HOST).strip(),
        api_port=parse_int_env("VMCTL_API_PORT", str(DEFAULT_API_PORT), min_val=1, max_val=65535),
    )

    defaults = load_defaults_file(home / CONFIG_FILE_NAME)
    if "cpu" in defaults:
        settings.default_cpu = str(defaults["cpu"])
    if "cpus" in defaults:
        settings.default_cpus = validate_cpus(defaults["cpus"])
    if "memory" in defaults:
        settings.default_memory = validate_memory(str(defaults["memory"]))
    return settings
