"""Platform detection for release assets."""

from __future__ import annotations

import platform

from agent_layer.errors import UnsupportedPlatformError

TOOL_NAME = "al"

SUPPORTED_OS: tuple[str, ...] = ("darwin", "linux")
SUPPORTED_ARCH: tuple[str, ...] = ("amd64", "arm64")

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "arm64": "arm64",
    "aarch64": "arm64",
}


def resolve_platform(system_name: str, machine: str) -> tuple[str, str]:
    """Map a ``platform.system()``/``platform.machine()`` pair to ``(os, arch)``."""
    os_name = system_name.strip().lower()
    if os_name not in SUPPORTED_OS:
        raise UnsupportedPlatformError(f"unsupported OS {system_name!r}")

    raw_arch = machine.strip().lower()
    arch = _ARCH_ALIASES.get(raw_arch)
    if arch not in SUPPORTED_ARCH:
        raise UnsupportedPlatformError(f"unsupported architecture {machine!r}")
    return os_name, arch


def current_platform() -> tuple[str, str]:
    return resolve_platform(platform.system(), platform.machine())


def asset_name(os_name: str, arch: str) -> str:
    return f"{TOOL_NAME}-{os_name}-{arch}"
