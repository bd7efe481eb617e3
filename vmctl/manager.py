"""VM lifecycle orchestration for vmctl.

``MachineManager`` is the only component that writes status transitions. Every
blocking step (registry I/O, spawning, signalling) runs in a worker thread so
that a slow operation only suspends the task that issued it. Mutations on one
machine id are serialized through a per-id lock; different ids never wait on
each other.

Stored status is reconciled lazily: whenever a record is read or operated on,
a RUNNING record whose process is gone is rewritten as STOPPED.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

from vmctl.config import Settings
from vmctl.constants import DEFAULT_DISK_FORMAT, DEFAULT_DISK_SIZE
from vmctl.exceptions import ValidationError, VmAlreadyRunningError, VmNotFoundError, VolumeNotFoundError
from vmctl.models import STATUS_STOPPED, LaunchSpec, MachineParams, MachineRecord, Volume
from vmctl.qemu import prepare_launch, validate_machine
from vmctl.state import StateStore
from vmctl.stop import StopController
from vmctl.supervisor import ProcessSupervisor, is_alive, latest_log
from vmctl.utils import (
    generate_machine_id,
    log,
    utc_now,
    validate_cpus,
    validate_machine_id,
    validate_memory,
    validate_port_forwards,
)


def validate_params(params: MachineParams) -> None:
    if params.cpus is not None:
        validate_cpus(params.cpus)
    if params.memory is not None:
        validate_memory(params.memory)
    if params.port_forwards is not None:
        validate_port_forwards(params.port_forwards)
    if params.cpu is not None and not params.cpu.strip():
        raise ValidationError("CPU model must not be empty")


def volume_of(record: MachineRecord) -> Volume:
    try:
        allocated: Optional[int] = Path(record.drive or "").stat().st_size
    except FileNotFoundError:
        allocated = None
    return Volume.from_record(record, allocated)


class MachineManager:
    def __init__(
        self,
        settings: Settings,
        store: Optional[StateStore] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        stopper: Optional[StopController] = None,
    ) -> None:
        self.settings = settings
        self.store = store or StateStore(settings.machines_dir)
        self.supervisor = supervisor or ProcessSupervisor()
        self.stopper = stopper or StopController(grace_period=settings.stop_grace)
        # Only ids with a task inside _locked() have an entry.
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _locked(self, vm_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(vm_id)
        if lock is None:
            lock = self._locks[vm_id] = asyncio.Lock()
        self._lock_users[vm_id] = self._lock_users.get(vm_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[vm_id] -= 1
            if not self._lock_users[vm_id]:
                del self._lock_users[vm_id]
                del self._locks[vm_id]

    # -- reconciliation -------------------------------------------------

    def _reconcile(self, record: MachineRecord) -> MachineRecord:
        if record.running and not is_alive(record.pid, record.started_at):
            log("WARN", f"VM {record.id} is recorded as running but PID {record.pid} is gone; marking stopped")
            record = record.as_stopped(utc_now())
            self.store.upsert(record)
        return record

    def _reconcile_stored(self, vm_id: str) -> MachineRecord:
        return self._reconcile(self.store.get(vm_id))

    async def _reconciled(self, record: MachineRecord) -> MachineRecord:
        if not record.running:
            return record
        # An in-flight operation on this id will write the truth itself.
        if record.id in self._locks:
            return record
        async with self._locked(record.id):
            # re-read: the copy we were given may predate a restart
            return await asyncio.to_thread(self._reconcile_stored, record.id)

    # -- reads ----------------------------------------------------------

    async def list_instances(self, include_stopped: bool = False) -> List[MachineRecord]:
        records = await asyncio.to_thread(self.store.list, True)
        result = []
        for record in records:
            try:
                record = await self._reconciled(record)
            except VmNotFoundError:
                # removed while we were listing
                continue
            if include_stopped or record.running:
                result.append(record)
        return result

    async def get_instance_state(self, vm_id: str) -> MachineRecord:
        record = await asyncio.to_thread(self.store.get, vm_id)
        return await self._reconciled(record)

    async def instance_logs(self, vm_id: str) -> Optional[Path]:
        record = await asyncio.to_thread(self.store.get, vm_id)
        return latest_log(Path(record.logs_dir), record.id)

    async def list_volumes(self) -> List[Volume]:
        records = await asyncio.to_thread(self.store.list, True)
        return [await asyncio.to_thread(volume_of, record) for record in records if record.drive]

    async def get_volume(self, volume_id: str) -> Volume:
        try:
            record = await asyncio.to_thread(self.store.get, volume_id)
        except VmNotFoundError:
            raise VolumeNotFoundError(volume_id) from None
        if not record.drive:
            raise VolumeNotFoundError(volume_id)
        return await asyncio.to_thread(volume_of, record)

    # -- provisioning ---------------------------------------------------

    def _new_record(self, spec: LaunchSpec) -> MachineRecord:
        vm_id = validate_machine_id(spec.id) if spec.id else generate_machine_id()
        if not spec.name or not spec.name.strip():
            raise ValidationError("Machine name must not be empty")
        params = spec.params()
        validate_params(params)
        now = utc_now()
        drive = str(Path(spec.drive).expanduser().absolute()) if spec.drive else None
        iso = str(Path(spec.iso).expanduser().absolute()) if spec.iso else None
        record = MachineRecord(
            id=vm_id,
            name=spec.name.strip(),
            status=STATUS_STOPPED,
            cpu=self.settings.default_cpu,
            cpus=self.settings.default_cpus,
            memory=self.settings.default_memory,
            logs_dir=str(self.settings.logs_root / vm_id),
            created_at=now,
            updated_at=now,
            drive=drive,
            disk_format=spec.disk_format or DEFAULT_DISK_FORMAT,
            disk_size=spec.disk_size or DEFAULT_DISK_SIZE,
            iso=iso,
        ).merged(params)
        validate_machine(record)
        return record

    def _check_unique(self, vm_id: str) -> None:
        if self.store.exists(vm_id):
            raise ValidationError(f"VM {vm_id} already exists", vm_id)

    async def create_instance(self, spec: LaunchSpec) -> MachineRecord:
        record = self._new_record(spec)
        async with self._locked(record.id):
            await asyncio.to_thread(self._check_unique, record.id)
            await asyncio.to_thread(self.store.upsert, record)
        log("INFO", f"VM {record.id} ({record.name}) created")
        return record

    async def launch_instance(self, spec: LaunchSpec) -> MachineRecord:
        """Create and start a new machine. Nothing is persisted unless the spawn succeeds."""
        record = self._new_record(spec)
        async with self._locked(record.id):
            await asyncio.to_thread(self._check_unique, record.id)
            return await self._spawn(record)

    async def remove_instance(self, vm_id: str) -> MachineRecord:
        async with self._locked(vm_id):
            record = await asyncio.to_thread(self._reconcile_stored, vm_id)
            if record.running:
                raise VmAlreadyRunningError(vm_id, f"VM {vm_id} is running; stop it before removing")
            await asyncio.to_thread(self.store.delete, vm_id)
        log("INFO", f"VM {vm_id} removed")
        return record

    # -- transitions ----------------------------------------------------

    async def _spawn(self, record: MachineRecord) -> MachineRecord:
        argv = await asyncio.to_thread(prepare_launch, record, self.settings)
        handle = await asyncio.to_thread(self.supervisor.start, record.id, argv, Path(record.logs_dir))
        running = record.as_running(handle, utc_now())
        try:
            await asyncio.to_thread(self.store.upsert, running)
        except Exception:
            log("ERROR", f"Could not record PID {handle.pid} for VM {record.id}; terminating it")
            await asyncio.to_thread(self.stopper.stop, running)
            raise
        return running

    async def _stop_locked(self, record: MachineRecord) -> MachineRecord:
        stopped = await asyncio.to_thread(self.stopper.stop, record)
        if record.running or record.pid is not None:
            await asyncio.to_thread(self.store.upsert, stopped)
            return stopped
        # already stopped: nothing to write
        return record

    async def start_instance(self, vm_id: str, params: Optional[MachineParams] = None) -> MachineRecord:
        params = params or MachineParams()
        validate_params(params)
        async with self._locked(vm_id):
            record = await asyncio.to_thread(self._reconcile_stored, vm_id)
            if record.running:
                raise VmAlreadyRunningError(vm_id)
            return await self._spawn(record.merged(params))

    async def stop_instance(self, vm_id: str) -> MachineRecord:
        async with self._locked(vm_id):
            record = await asyncio.to_thread(self.store.get, vm_id)
            return await self._stop_locked(record)

    async def restart_instance(self, vm_id: str, params: Optional[MachineParams] = None) -> MachineRecord:
        params = params or MachineParams()
        validate_params(params)
        async with self._locked(vm_id):
            record = await asyncio.to_thread(self.store.get, vm_id)
            stopped = await self._stop_locked(record)
            return await self._spawn(stopped.merged(params))
