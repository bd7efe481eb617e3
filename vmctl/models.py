"""Data models for vmctl."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

STATUS_RUNNING = "RUNNING"
STATUS_STOPPED = "STOPPED"
STATUSES = {STATUS_RUNNING, STATUS_STOPPED}


class PortForward(NamedTuple):
    host_port: int
    guest_port: int

    def __str__(self) -> str:
        return f"{self.host_port}:{self.guest_port}"


class ProcessHandle(NamedTuple):
    pid: int
    log_path: Path
    # process creation time (epoch seconds) as reported by the OS
    started_at: Optional[float] = None


@dataclass
class MachineParams:
    """Start/restart overrides. ``None`` means "keep the stored value"."""

    cpu: Optional[str] = None
    cpus: Optional[int] = None
    memory: Optional[str] = None
    port_forwards: Optional[List[str]] = None


@dataclass
class LaunchSpec:
    name: str
    id: Optional[str] = None
    iso: Optional[str] = None
    drive: Optional[str] = None
    disk_format: Optional[str] = None
    disk_size: Optional[str] = None
    cpu: Optional[str] = None
    cpus: Optional[int] = None
    memory: Optional[str] = None
    port_forwards: List[str] = field(default_factory=list)

    def params(self) -> MachineParams:
        return MachineParams(
            cpu=self.cpu,
            cpus=self.cpus,
            memory=self.memory,
            port_forwards=list(self.port_forwards),
        )


@dataclass
class MachineRecord:
    id: str
    name: str
    status: str
    cpu: str
    cpus: int
    memory: str
    logs_dir: str
    created_at: str
    updated_at: str
    pid: Optional[int] = None
    port_forwards: List[str] = field(default_factory=list)
    drive: Optional[str] = None
    disk_format: str = "qcow2"
    disk_size: str = "20G"
    iso: Optional[str] = None
    started_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self.status == STATUS_RUNNING

    def merged(self, params: MachineParams) -> "MachineRecord":
        """Return a copy with explicit overrides applied; omitted fields keep their values."""
        changes: Dict[str, Any] = {}
        if params.cpu is not None:
            changes["cpu"] = params.cpu
        if params.cpus is not None:
            changes["cpus"] = params.cpus
        if params.memory is not None:
            changes["memory"] = params.memory
        if params.port_forwards is not None:
            changes["port_forwards"] = list(params.port_forwards)
        return dataclasses.replace(self, **changes)

    def as_running(self, handle: ProcessHandle, timestamp: str) -> "MachineRecord":
        return dataclasses.replace(
            self, status=STATUS_RUNNING, pid=handle.pid, started_at=handle.started_at, updated_at=timestamp
        )

    def as_stopped(self, timestamp: str) -> "MachineRecord":
        return dataclasses.replace(
            self, status=STATUS_STOPPED, pid=None, started_at=None, updated_at=timestamp
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["port_forwards"] = list(self.port_forwards)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MachineRecord":
        known = {f.name for f in dataclasses.fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values["port_forwards"] = [str(item) for item in values.get("port_forwards") or []]
        if values.get("pid") is not None:
            values["pid"] = int(values["pid"])
        if values.get("started_at") is not None:
            values["started_at"] = float(values["started_at"])
        values["cpus"] = int(values["cpus"])
        return cls(**values)

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "pid": self.pid,
            "cpus": self.cpus,
            "memory": self.memory,
            "port_forwards": list(self.port_forwards),
            "created_at": self.created_at,
        }


@dataclass
class Volume:
    """Read-only view of a machine's drive image. Its id is the owning machine's id."""

    id: str
    path: str
    format: str
    size: str
    machine_name: str
    exists: bool = False
    allocated: Optional[int] = None

    @classmethod
    def from_record(cls, record: MachineRecord, allocated: Optional[int] = None) -> "Volume":
        if not record.drive:
            raise ValueError(f"VM {record.id} has no drive image")
        return cls(
            id=record.id,
            path=record.drive,
            format=record.disk_format,
            size=record.disk_size,
            machine_name=record.name,
            exists=allocated is not None,
            allocated=allocated,
        )

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)
