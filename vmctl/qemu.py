"""QEMU command-line assembly and drive image preparation for vmctl."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from vmctl.config import Settings
from vmctl.constants import (
    DEFAULT_CPU_MODEL,
    DEFAULT_CPUS,
    DEFAULT_MEMORY,
    DEFAULT_QEMU_BINARY,
    DEFAULT_QEMU_IMG_BINARY,
    NIC_MODEL,
    OVMF_CODE_PATHS,
    SUPPORTED_DISK_FORMATS,
)
from vmctl.exceptions import DriveImageError, ValidationError
from vmctl.models import MachineRecord, PortForward
from vmctl.utils import (
    ensure_directory,
    log,
    parse_port_forward,
    run,
    validate_cpus,
    validate_disk_size,
    validate_memory,
)


def render_hostfwd(port_forwards: Iterable[PortForward]) -> List[str]:
    return [f"hostfwd=tcp::{pf.host_port}-:{pf.guest_port}" for pf in port_forwards]


def render_netdev(port_forwards: Sequence[str]) -> str:
    """Join all forwarding rules into a single user-mode netdev definition, in list order."""
    rules = render_hostfwd(parse_port_forward(entry) for entry in port_forwards)
    return ",".join(["user", "id=net0"] + rules)


def resolve_firmware_args(candidates: Sequence[Path] = OVMF_CODE_PATHS) -> List[str]:
    """Return pflash arguments for the first OVMF code image found, or nothing."""
    for path in candidates:
        if path.exists():
            log("DEBUG", f"Using UEFI firmware {path}")
            return ["-drive", f"if=pflash,format=raw,readonly=on,file={path}"]
    return []


def validate_machine(machine: MachineRecord) -> None:
    if not machine.iso and not machine.drive:
        raise ValidationError(f"VM {machine.id} needs a boot ISO or a drive image", machine.id)
    validate_cpus(machine.cpus)
    validate_memory(machine.memory)
    for entry in machine.port_forwards:
        parse_port_forward(entry)
    if machine.drive:
        if machine.disk_format not in SUPPORTED_DISK_FORMATS:
            raise ValidationError(
                f"Unsupported disk format '{machine.disk_format}'. "
                f"Supported: {', '.join(sorted(SUPPORTED_DISK_FORMATS))}",
                machine.id,
            )
        validate_disk_size(machine.disk_size)


def build_qemu_args(
    machine: MachineRecord,
    firmware_args: Optional[Sequence[str]] = None,
    qemu_binary: str = DEFAULT_QEMU_BINARY,
    enable_kvm: bool = True,
) -> List[str]:
    """Build the hypervisor argument vector. Pure: touches neither disk nor processes."""
    validate_machine(machine)

    args: List[str] = [qemu_binary]
    if enable_kvm:
        args.append("-enable-kvm")
    args.extend(
        [
            "-cpu",
            machine.cpu or DEFAULT_CPU_MODEL,
            "-m",
            machine.memory or DEFAULT_MEMORY,
            "-smp",
            str(machine.cpus or DEFAULT_CPUS),
        ]
    )
    if machine.iso:
        args.extend(["-cdrom", machine.iso])
    args.extend(
        [
            "-netdev",
            render_netdev(machine.port_forwards),
            "-device",
            f"{NIC_MODEL},netdev=net0",
            "-nographic",
            "-monitor",
            "none",
            "-chardev",
            "stdio,id=con0,signal=off",
            "-serial",
            "chardev:con0",
        ]
    )
    if firmware_args:
        args.extend(firmware_args)
    if machine.drive:
        args.extend(["-drive", f"file={machine.drive},format={machine.disk_format},if=virtio"])
    return args


def ensure_drive_image(path: Path, fmt: str, size: str, qemu_img: str = DEFAULT_QEMU_IMG_BINARY) -> bool:
    """Create the drive image if it does not exist yet. Returns True when a file was created."""
    if path.exists():
        return False
    ensure_directory(path.parent)
    log("INFO", f"Creating drive image {path} ({fmt}, {size})")
    try:
        run([qemu_img, "create", "-f", fmt, str(path), size], capture_output=True)
    except FileNotFoundError as exc:
        raise DriveImageError(f"{qemu_img} not found; cannot create drive image {path}") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip() or f"exit code {exc.returncode}"
        raise DriveImageError(f"Failed to create drive image {path}: {detail}") from exc
    log("SUCCESS", f"Drive image {path} created")
    return True


def prepare_launch(machine: MachineRecord, settings: Settings) -> List[str]:
    """Validate, make sure the drive exists, then assemble the argument vector."""
    validate_machine(machine)
    if machine.drive:
        try:
            ensure_drive_image(
                Path(machine.drive),
                machine.disk_format,
                machine.disk_size,
                qemu_img=settings.qemu_img_binary,
            )
        except DriveImageError as exc:
            exc.vm_id = machine.id
            raise
    return build_qemu_args(
        machine,
        firmware_args=resolve_firmware_args(),
        qemu_binary=settings.qemu_binary,
        enable_kvm=settings.enable_kvm,
    )
