"""Custom exceptions for vmctl."""

from __future__ import annotations

from typing import Optional


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, vm_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.vm_id = vm_id


class ValidationError(ManagerError):
    """Malformed input; raised before any process or registry mutation."""

    code = "VALIDATION_ERROR"


class VmNotFoundError(ManagerError):
    code = "VM_NOT_FOUND"

    def __init__(self, vm_id: str) -> None:
        super().__init__(f"VM {vm_id} not found", vm_id)


class VmAlreadyRunningError(ManagerError):
    code = "VM_ALREADY_RUNNING"

    def __init__(self, vm_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"VM {vm_id} is already running", vm_id)


class CommandError(ManagerError):
    """The hypervisor (or a helper tool) could not be spawned or exited non-zero."""

    code = "COMMAND_ERROR"


class DriveImageError(CommandError):
    """Creating the backing drive image failed."""


class StopCommandError(ManagerError):
    """Termination of the hypervisor process could not be confirmed."""

    code = "STOP_COMMAND_ERROR"


class VolumeNotFoundError(ManagerError):
    code = "VOLUME_NOT_FOUND"

    def __init__(self, volume_id: str) -> None:
        super().__init__(f"Volume {volume_id} not found", volume_id)
