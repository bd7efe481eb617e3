"""CLI entry points for vmctl."""

from __future__ import annotations

import argparse
import asyncio
from typing import Any, Dict, List, Optional, Sequence

from vmctl.config import load_settings
from vmctl.exceptions import ManagerError
from vmctl.manager import MachineManager
from vmctl.models import LaunchSpec, MachineParams, MachineRecord, Volume
from vmctl.utils import log


def print_machines(records: Sequence[MachineRecord]) -> None:
    """Print a compact table of machines."""
    if not records:
        print("No machines found")
        return
    header = ("ID", "NAME", "STATUS", "PID", "CPUS", "MEMORY", "PORTS", "CREATED")
    rows = [
        (
            r.id,
            r.name,
            r.status,
            str(r.pid) if r.pid else "-",
            str(r.cpus),
            r.memory,
            ",".join(r.port_forwards) or "-",
            r.created_at,
        )
        for r in records
    ]
    widths = [max(len(row[i]) for row in [header] + rows) for i in range(len(header))]
    for row in [header] + rows:
        print("  ".join(value.ljust(widths[i]) for i, value in enumerate(row)).rstrip())


def print_volumes(volumes: Sequence[Volume]) -> None:
    if not volumes:
        print("No volumes found")
        return
    header = ("ID", "MACHINE", "FORMAT", "SIZE", "ALLOCATED", "PATH")
    rows = [
        (
            v.id,
            v.machine_name,
            v.format,
            v.size,
            str(v.allocated) if v.exists else "missing",
            v.path,
        )
        for v in volumes
    ]
    widths = [max(len(row[i]) for row in [header] + rows) for i in range(len(header))]
    for row in [header] + rows:
        print("  ".join(value.ljust(widths[i]) for i, value in enumerate(row)).rstrip())


def show_fields(data: Dict[str, Any]) -> None:
    for key, value in data.items():
        if isinstance(value, list):
            value = ", ".join(value) if value else "-"
        elif value is None:
            value = "-"
        print(f"  {key}: {value}")


def _params_from_args(args: argparse.Namespace) -> MachineParams:
    return MachineParams(
        cpu=args.cpu,
        cpus=args.cpus,
        memory=args.memory,
        port_forwards=args.port_forward,
    )


def _spec_from_args(args: argparse.Namespace) -> LaunchSpec:
    return LaunchSpec(
        name=args.name,
        id=args.id,
        iso=args.iso,
        drive=args.drive,
        disk_format=args.disk_format,
        disk_size=args.size,
        cpu=args.cpu,
        cpus=args.cpus,
        memory=args.memory,
        port_forwards=list(args.port_forward or []),
    )


def _add_machine_params(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--cpu", default=None, help="CPU model passed to -cpu (default: host)")
    parser.add_argument("--cpus", type=int, default=None, help="Number of virtual CPUs")
    parser.add_argument("--memory", "-m", default=None, help="Memory size, e.g. 2G or 512M")
    parser.add_argument(
        "--port-forward",
        "-p",
        action="append",
        default=None,
        metavar="HOST:GUEST",
        help="Forward a host TCP port to the guest (repeatable)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vmctl", description="Local QEMU virtual machine manager")
    sub = parser.add_subparsers(dest="command", required=True)

    ps = sub.add_parser("ps", help="List machines")
    ps.add_argument("--all", "-a", action="store_true", help="Include stopped machines")

    inspect = sub.add_parser("inspect", help="Show a machine record")
    inspect.add_argument("id")

    for name, help_text in (("run", "Create and start a new machine"), ("create", "Create a stopped machine")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--name", required=True)
        p.add_argument("--id", default=None, help="Machine id (generated when omitted)")
        p.add_argument("--iso", default=None, help="Boot ISO path")
        p.add_argument("--drive", default=None, help="Drive image path (created if missing)")
        p.add_argument("--disk-format", default=None, help="Drive image format (default: qcow2)")
        p.add_argument("--size", default=None, help="Drive size used when creating the image (default: 20G)")
        _add_machine_params(p)

    for name, help_text in (("start", "Start a stopped machine"), ("restart", "Restart a machine")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("id")
        _add_machine_params(p)

    stop = sub.add_parser("stop", help="Stop a running machine")
    stop.add_argument("id")

    rm = sub.add_parser("rm", help="Remove a stopped machine from the registry")
    rm.add_argument("id")

    logs = sub.add_parser("logs", help="Print the latest hypervisor log of a machine")
    logs.add_argument("id")

    volumes = sub.add_parser("volumes", help="List drive images, or show one by machine id")
    volumes.add_argument("id", nargs="?")

    serve = sub.add_parser("serve", help="Run the HTTP control API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    return parser


def dispatch(args: argparse.Namespace, manager: MachineManager) -> int:
    cmd = args.command
    if cmd == "ps":
        print_machines(asyncio.run(manager.list_instances(include_stopped=args.all)))
    elif cmd == "inspect":
        show_fields(asyncio.run(manager.get_instance_state(args.id)).to_dict())
    elif cmd == "run":
        record = asyncio.run(manager.launch_instance(_spec_from_args(args)))
        log("SUCCESS", f"VM {record.name} running as {record.id} (PID {record.pid})")
    elif cmd == "create":
        record = asyncio.run(manager.create_instance(_spec_from_args(args)))
        print(record.id)
    elif cmd == "start":
        record = asyncio.run(manager.start_instance(args.id, _params_from_args(args)))
        log("SUCCESS", f"VM {record.id} started (PID {record.pid})")
    elif cmd == "restart":
        record = asyncio.run(manager.restart_instance(args.id, _params_from_args(args)))
        log("SUCCESS", f"VM {record.id} restarted (PID {record.pid})")
    elif cmd == "stop":
        asyncio.run(manager.stop_instance(args.id))
    elif cmd == "rm":
        asyncio.run(manager.remove_instance(args.id))
    elif cmd == "logs":
        path = asyncio.run(manager.instance_logs(args.id))
        if path is None:
            log("WARN", f"No logs found for VM {args.id}")
            return 1
        print(path.read_text(errors="replace"), end="")
    elif cmd == "volumes":
        if args.id:
            show_fields(asyncio.run(manager.get_volume(args.id)).to_dict())
        else:
            print_volumes(asyncio.run(manager.list_volumes()))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
        if args.command == "serve":
            from vmctl.api import serve

            serve(settings, host=args.host, port=args.port)
            return 0
        return dispatch(args, MachineManager(settings))
    except ManagerError as exc:
        log("ERROR", exc.message)
        return 1
