"""Version dispatch: hand off to the pinned release when it differs from this build."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Literal, Sequence, TextIO

from agent_layer.cache import cache_root_dir, ensure_cached_binary
from agent_layer.config import ENV_SHIM_ACTIVE, ENV_VERSION_OVERRIDE, load_dispatch_settings
from agent_layer.errors import (
    DevVersionError,
    DispatchLoopError,
    ExitHandlerRequiredError,
    InvalidVersionError,
    MissingArgv0Error,
    SystemRequiredError,
    WorkingDirRequiredError,
)
from agent_layer.pin import PIN_FILENAME
from agent_layer.resolve import SOURCE_CURRENT, SOURCE_OVERRIDE, resolve_requested_version
from agent_layer.system import MARKER_DIR, RealSystem, System
from agent_layer.version import DEV_VERSION, is_dev_version, normalize_version

DispatchOutcome = Literal["continue", "dispatched"]

# The local CLI should run.
CONTINUE: DispatchOutcome = "continue"
# Control was handed to another binary; the caller has nothing left to do.
DISPATCHED: DispatchOutcome = "dispatched"

VERSION_SOURCE_MESSAGE = "Agent Layer version source: {version} ({label})"
OVERRIDE_SHADOWS_PIN_MESSAGE = (
    f"warning: {ENV_VERSION_OVERRIDE} overrides repo pin {{pinned}} from {MARKER_DIR}/{PIN_FILENAME}"
)


def normalize_current_version(raw: str) -> str:
    if is_dev_version(raw):
        return DEV_VERSION
    try:
        return normalize_version(raw)
    except InvalidVersionError as exc:
        raise InvalidVersionError(f"invalid build version {raw!r}: {exc}") from exc


def maybe_exec(
    args: Sequence[str],
    current_version: str,
    cwd: str | Path,
    exit: Callable[[int], None],
    *,
    stderr: TextIO | None = None,
) -> DispatchOutcome:
    system = RealSystem() if stderr is None else RealSystem(stderr=stderr)
    return maybe_exec_with_system(system, args, current_version, cwd, exit)


def maybe_exec_with_system(
    system: System | None,
    args: Sequence[str],
    current_version: str,
    cwd: str | Path,
    exit: Callable[[int], None] | None,
) -> DispatchOutcome:
    """Run the pinned version in place of this one when they differ.

    Returns ``CONTINUE`` when this build is the right one and ``DISPATCHED``
    once a spawned child has finished. With an exec launcher a successful
    hand-off never returns at all.
    """
    if system is None:
        raise SystemRequiredError("dispatch system is required")
    if not args:
        raise MissingArgv0Error("missing argv[0]")
    if not str(cwd):
        raise WorkingDirRequiredError("working directory is required")
    if exit is None:
        raise ExitHandlerRequiredError("exit handler is required")

    current = normalize_current_version(current_version)
    settings = load_dispatch_settings(system.getenv)
    root = system.find_project_root(Path(cwd))

    resolved = resolve_requested_version(system, root, current, settings)
    out = system.stderr
    if resolved.warning:
        print(resolved.warning, file=out)
    if resolved.source != SOURCE_CURRENT:
        print(VERSION_SOURCE_MESSAGE.format(version=resolved.value, label=resolved.source_label), file=out)
    if resolved.source == SOURCE_OVERRIDE and resolved.shadowed_pin:
        print(OVERRIDE_SHADOWS_PIN_MESSAGE.format(pinned=resolved.shadowed_pin), file=out)

    if resolved.value == current:
        return CONTINUE
    if settings.shim_active:
        raise DispatchLoopError(
            f"version dispatch already active (current {current}, requested {resolved.value})"
        )
    if is_dev_version(resolved.value):
        raise DevVersionError(
            f"cannot dispatch to dev version; set {ENV_VERSION_OVERRIDE} to a release version"
        )

    cache_root = cache_root_dir(system, settings)
    path = ensure_cached_binary(system, cache_root, resolved.value, out, settings=settings)

    env = system.environ()
    env[ENV_SHIM_ACTIVE] = "1"
    system.replace_process(str(path), [str(path), *args[1:]], env, exit)
    return DISPATCHED


def prefetch_version(version: str, progress: TextIO | None = None, *, system: System | None = None) -> Path:
    """Make sure ``version`` is in the cache without running it."""
    try:
        normalized = normalize_version(version)
    except InvalidVersionError as exc:
        raise InvalidVersionError(f"invalid version: {exc}") from exc
    if system is None:
        system = RealSystem()
    settings = load_dispatch_settings(system.getenv)
    cache_root = cache_root_dir(system, settings)
    return ensure_cached_binary(system, cache_root, normalized, progress, settings=settings)
