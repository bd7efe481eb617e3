"""vmctl package."""

__all__ = [
    "api",
    "cli",
    "config",
    "constants",
    "exceptions",
    "manager",
    "models",
    "qemu",
    "state",
    "stop",
    "supervisor",
    "utils",
]
