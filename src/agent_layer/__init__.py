"""agent-layer version dispatch public surface."""

from agent_layer.cache import cache_root_dir, cached_binary_path, ensure_cached_binary, verify_checksum
from agent_layer.config import DispatchSettings, load_dispatch_settings
from agent_layer.dispatch import CONTINUE, DISPATCHED, maybe_exec, maybe_exec_with_system, prefetch_version
from agent_layer.errors import (
    ChecksumMismatchError,
    ChecksumNotFoundError,
    ConfigurationError,
    DispatchError,
    DispatchLoopError,
    IntegrityError,
    InvalidVersionError,
    LockTimeoutError,
    NetworkError,
    NotCachedError,
    ReleaseNotFoundError,
    UnsupportedPlatformError,
)
from agent_layer.launcher import ExecLauncher, ProcessLauncher, SpawnLauncher, select_launcher
from agent_layer.lock import acquire_file_lock, with_file_lock
from agent_layer.pin import PinnedVersion, PinWarning, read_pinned_version
from agent_layer.platforms import asset_name, resolve_platform
from agent_layer.releases import ReleaseClient, parse_checksum_manifest
from agent_layer.resolve import ResolvedVersion, resolve_requested_version
from agent_layer.system import RealSystem, System, find_project_root
from agent_layer.version import is_dev_version, normalize_version

__all__ = [
    "DispatchError",
    "ConfigurationError",
    "InvalidVersionError",
    "UnsupportedPlatformError",
    "NetworkError",
    "ReleaseNotFoundError",
    "IntegrityError",
    "ChecksumMismatchError",
    "ChecksumNotFoundError",
    "NotCachedError",
    "LockTimeoutError",
    "DispatchLoopError",
    "DispatchSettings",
    "load_dispatch_settings",
    "normalize_version",
    "is_dev_version",
    "resolve_platform",
    "asset_name",
    "PinnedVersion",
    "PinWarning",
    "read_pinned_version",
    "ResolvedVersion",
    "resolve_requested_version",
    "acquire_file_lock",
    "with_file_lock",
    "ReleaseClient",
    "parse_checksum_manifest",
    "cache_root_dir",
    "cached_binary_path",
    "ensure_cached_binary",
    "verify_checksum",
    "ProcessLauncher",
    "ExecLauncher",
    "SpawnLauncher",
    "select_launcher",
    "System",
    "RealSystem",
    "find_project_root",
    "CONTINUE",
    "DISPATCHED",
    "maybe_exec",
    "maybe_exec_with_system",
    "prefetch_version",
]
