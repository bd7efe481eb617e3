"""HTTP control API for vmctl."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import APIRouter, Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from vmctl.config import Settings
from vmctl.exceptions import (
    CommandError,
    ManagerError,
    StopCommandError,
    ValidationError,
    VmAlreadyRunningError,
    VmNotFoundError,
    VolumeNotFoundError,
)
from vmctl.manager import MachineManager
from vmctl.models import LaunchSpec, MachineParams
from vmctl.utils import log, parse_port_forward, validate_memory

ERROR_STATUS = {
    VmNotFoundError: 404,
    VolumeNotFoundError: 404,
    ValidationError: 400,
    VmAlreadyRunningError: 400,
    StopCommandError: 500,
    CommandError: 500,
}


class MachineParamsRequest(BaseModel):
    portForward: Optional[List[str]] = None
    cpu: Optional[str] = None
    cpus: Optional[int] = Field(default=None, ge=1, strict=True)
    memory: Optional[str] = None

    @field_validator("memory")
    @classmethod
    def check_memory(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                validate_memory(v)
            except ValidationError as exc:
                raise ValueError(exc.message) from exc
        return v

    @field_validator("portForward")
    @classmethod
    def check_port_forward(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        for entry in v or []:
            try:
                parse_port_forward(entry)
            except ValidationError as exc:
                raise ValueError(exc.message) from exc
        return v

    def to_params(self) -> MachineParams:
        return MachineParams(
            cpu=self.cpu,
            cpus=self.cpus,
            memory=self.memory,
            port_forwards=list(self.portForward) if self.portForward is not None else None,
        )


class CreateMachineRequest(MachineParamsRequest):
    name: str = Field(..., min_length=1, max_length=255)
    id: Optional[str] = None
    iso: Optional[str] = None
    drive: Optional[str] = None
    diskFormat: Optional[str] = None
    size: Optional[str] = None

    def to_spec(self) -> LaunchSpec:
        return LaunchSpec(
            name=self.name,
            id=self.id,
            iso=self.iso,
            drive=self.drive,
            disk_format=self.diskFormat,
            disk_size=self.size,
            cpu=self.cpu,
            cpus=self.cpus,
            memory=self.memory,
            port_forwards=list(self.portForward or []),
        )


def error_response(exc: ManagerError) -> JSONResponse:
    status = 500
    for exc_type, code in ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            status = code
            break
    if status >= 500:
        log("ERROR", exc.message)
    return JSONResponse({"message": exc.message, "code": exc.code}, status_code=status)


def get_manager(request: Request) -> MachineManager:
    return request.app.state.manager


router = APIRouter(prefix="/machines", tags=["machines"])


@router.get("")
async def list_machines(request: Request, all: bool = Query(False)) -> List[Dict[str, Any]]:
    records = await get_manager(request).list_instances(include_stopped=all)
    return [record.summary() for record in records]


@router.post("")
async def create_machine(request: Request, body: CreateMachineRequest) -> Dict[str, Any]:
    record = await get_manager(request).create_instance(body.to_spec())
    return record.to_dict()


@router.get("/{vm_id}")
async def get_machine(request: Request, vm_id: str) -> Dict[str, Any]:
    record = await get_manager(request).get_instance_state(vm_id)
    return record.to_dict()


@router.delete("/{vm_id}")
async def delete_machine(request: Request, vm_id: str) -> Dict[str, Any]:
    await get_manager(request).remove_instance(vm_id)
    return {"message": f"Machine with ID {vm_id} deleted"}


@router.post("/{vm_id}/start")
async def start_machine(
    request: Request, vm_id: str, body: Optional[MachineParamsRequest] = Body(default=None)
) -> Dict[str, Any]:
    params = body.to_params() if body else MachineParams()
    record = await get_manager(request).start_instance(vm_id, params)
    return record.to_dict()


@router.post("/{vm_id}/stop")
async def stop_machine(request: Request, vm_id: str) -> Dict[str, Any]:
    record = await get_manager(request).stop_instance(vm_id)
    return record.to_dict()


@router.post("/{vm_id}/restart")
async def restart_machine(
    request: Request, vm_id: str, body: Optional[MachineParamsRequest] = Body(default=None)
) -> Dict[str, Any]:
    params = body.to_params() if body else MachineParams()
    record = await get_manager(request).restart_instance(vm_id, params)
    return record.to_dict()


volumes_router = APIRouter(prefix="/volumes", tags=["volumes"])


@volumes_router.get("")
async def list_volumes(request: Request) -> List[Dict[str, Any]]:
    volumes = await get_manager(request).list_volumes()
    return [volume.to_dict() for volume in volumes]


@volumes_router.get("/{volume_id}")
async def get_volume(request: Request, volume_id: str) -> Dict[str, Any]:
    volume = await get_manager(request).get_volume(volume_id)
    return volume.to_dict()


def create_app(manager: MachineManager) -> FastAPI:
    app = FastAPI(title="vmctl", description="Local QEMU virtual machine control API")
    app.state.manager = manager

    @app.exception_handler(ManagerError)
    async def handle_manager_error(request: Request, exc: ManagerError) -> JSONResponse:
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        messages = [str(err.get("msg", "")) for err in exc.errors()]
        return JSONResponse(
            {"message": "; ".join(messages) or "Failed to parse request body", "code": "PARSE_BODY_ERROR"},
            status_code=400,
        )

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    app.include_router(router)
    app.include_router(volumes_router)
    return app


def serve(settings: Settings, host: Optional[str] = None, port: Optional[int] = None) -> None:
    manager = MachineManager(settings)
    bind_host = host or settings.api_host
    bind_port = port or settings.api_port
    log("INFO", f"Serving vmctl API on http://{bind_host}:{bind_port}")
    uvicorn.run(create_app(manager), host=bind_host, port=bind_port, log_level="info")
