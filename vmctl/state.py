"""Durable machine registry for vmctl.

Each machine lives in its own YAML document under ``<home>/machines``. Writes
go to a temporary file in the same directory which is fsynced and then
``os.replace``d over the record, so a reader sees either the old or the new
document and never a partial one.
"""

from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path
from typing import List

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vmctl.exceptions import ManagerError, VmNotFoundError
from vmctl.models import STATUS_RUNNING, STATUSES, MachineRecord
from vmctl.utils import ensure_directory, log, validate_machine_id

RECORD_SUFFIX = ".yaml"


class StateStore:
    def __init__(self, root: Path) -> None:
        self.root = root
        self._write_lock = threading.Lock()
        ensure_directory(self.root)

    def _path(self, vm_id: str) -> Path:
        validate_machine_id(vm_id)
        return self.root / f"{vm_id}{RECORD_SUFFIX}"

    def _load(self, path: Path) -> MachineRecord:
        data = yaml.safe_load(path.read_text())
        if not isinstance(data, dict):
            raise ManagerError(f"Registry record {path} is not a mapping")
        try:
            record = MachineRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise ManagerError(f"Registry record {path} is malformed: {exc}") from exc
        if record.status not in STATUSES:
            raise ManagerError(f"Registry record {path} has unknown status '{record.status}'")
        return record

    def exists(self, vm_id: str) -> bool:
        return self._path(vm_id).exists()

    def get(self, vm_id: str) -> MachineRecord:
        path = self._path(vm_id)
        try:
            return self._load(path)
        except FileNotFoundError:
            raise VmNotFoundError(vm_id) from None
        except yaml.YAMLError as exc:
            raise ManagerError(f"Registry record {path} is unreadable: {exc}", vm_id) from exc

    def list(self, include_stopped: bool = False) -> List[MachineRecord]:
        records = []
        for path in sorted(self.root.glob(f"*{RECORD_SUFFIX}")):
            try:
                record = self._load(path)
            except FileNotFoundError:
                # removed between glob and read
                continue
            except (ManagerError, yaml.YAMLError) as exc:
                log("WARN", f"Skipping unreadable registry record {path.name}: {exc}")
                continue
            if include_stopped or record.status == STATUS_RUNNING:
                records.append(record)
        records.sort(key=lambda r: (r.created_at, r.id))
        return records

    def upsert(self, record: MachineRecord) -> None:
        path = self._path(record.id)
        payload = yaml.safe_dump(record.to_dict(), sort_keys=False, default_flow_style=False)
        with self._write_lock:
            with tempfile.NamedTemporaryFile(
                "w", delete=False, dir=self.root, prefix=f".{record.id}.", suffix=".tmp"
            ) as tmp:
                tmp_path = Path(tmp.name)
                try:
                    tmp.write(payload)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                except BaseException:
                    tmp.close()
                    tmp_path.unlink(missing_ok=True)
                    raise
            try:
                os.replace(tmp_path, path)
            except OSError:
                tmp_path.unlink(missing_ok=True)
                raise
        log("DEBUG", f"Registry: saved {record.id} ({record.status})")

    def delete(self, vm_id: str) -> None:
        path = self._path(vm_id)
        with self._write_lock:
            try:
                path.unlink()
            except FileNotFoundError:
                raise VmNotFoundError(vm_id) from None
        log("DEBUG", f"Registry: removed {vm_id}")
