"""Command-line interface for al.

Every invocation first runs version dispatch; only when this build is the
right one does the local command parser run.
"""

from __future__ import annotations

import argparse
import contextlib
import io
import json
import os
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path
from typing import Callable, Sequence, TextIO

from agent_layer.config import load_dispatch_settings
from agent_layer.dispatch import DISPATCHED, maybe_exec_with_system, normalize_current_version, prefetch_version
from agent_layer.errors import DispatchError, IntegrityError, LockTimeoutError, NetworkError
from agent_layer.resolve import resolve_requested_version
from agent_layer.system import RealSystem, System
from agent_layer.version import DEV_VERSION

DISTRIBUTION_NAME = "agent-layer-dispatch"

EXIT_SUCCESS = 0
EXIT_VALIDATION_ERROR = 1
EXIT_NETWORK_ERROR = 2
EXIT_TIMEOUT = 3
EXIT_VERIFICATION_FAILED = 4

# These run through the invoking binary so upgrades are planned against
# its own templates, and MCP stdio servers never hop to another binary.
BYPASS_COMMANDS = frozenset({"init", "upgrade", "mcp-prompts"})

QUIET_FLAGS = ("--quiet", "-q")
QUIET_PREFIX = "--quiet="
_TRUE_VALUES = {"1", "t", "true"}
_FALSE_VALUES = {"0", "f", "false"}


def package_version() -> str:
    try:
        return pkg_version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return DEV_VERSION


def first_command_arg(args: Sequence[str]) -> str:
    for index, arg in enumerate(args):
        trimmed = arg.strip()
        if not trimmed:
            continue
        if trimmed == "--":
            if index + 1 >= len(args):
                return ""
            return args[index + 1].strip()
        if trimmed.startswith("-"):
            continue
        return trimmed
    return ""


def should_bypass_dispatch(argv: Sequence[str]) -> bool:
    if len(argv) < 2:
        return False
    return first_command_arg(argv[1:]) in BYPASS_COMMANDS


def has_quiet_flag(argv: Sequence[str]) -> bool:
    for arg in argv[1:]:
        trimmed = arg.strip()
        if not trimmed:
            continue
        if trimmed == "--":
            break
        if trimmed in QUIET_FLAGS:
            return True
        if trimmed.startswith(QUIET_PREFIX):
            value = trimmed[len(QUIET_PREFIX):].lower()
            if value in _TRUE_VALUES:
                return True
    return False


def _exit_code_for(exc: DispatchError) -> int:
    if isinstance(exc, LockTimeoutError):
        return EXIT_TIMEOUT
    if isinstance(exc, NetworkError):
        return EXIT_NETWORK_ERROR
    if isinstance(exc, IntegrityError):
        return EXIT_VERIFICATION_FAILED
    return EXIT_VALIDATION_ERROR


def _print_error(stderr, prefix: str, message: str, *, code: int) -> int:
    print(f"{prefix}: {message}", file=stderr)
    return code


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="al")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress dispatch notices")

    sub = parser.add_subparsers(dest="command", required=True)

    version = sub.add_parser("version", help="Show the running al version")
    version.add_argument("--json", action="store_true", help="Print version details as JSON")

    which = sub.add_parser("which", help="Show which al version this directory resolves to")
    which.add_argument("--json", action="store_true")

    upgrade = sub.add_parser("upgrade", help="Manage cached al releases")
    upgrade_sub = upgrade.add_subparsers(dest="upgrade_command", required=True)
    prefetch = upgrade_sub.add_parser("prefetch", help="Download a release into the local cache")
    prefetch.add_argument("--version", required=True, help="Release version (X.Y.Z)")

    return parser


def _hoist_quiet_flags(args: Sequence[str]) -> list[str]:
    """Move quiet flags in front of the subcommand for the root parser.

    Quiet flags are honored anywhere before ``--``; ``--quiet=<bool>``
    becomes ``--quiet`` or is dropped. Unrecognized values pass through so
    argparse reports them.
    """
    quiet = False
    stripped: list[str] = []
    for index, arg in enumerate(args):
        trimmed = arg.strip()
        if trimmed == "--":
            stripped.extend(args[index:])
            break
        if trimmed in QUIET_FLAGS:
            quiet = True
            continue
        if trimmed.startswith(QUIET_PREFIX):
            value = trimmed[len(QUIET_PREFIX):].lower()
            if value in _TRUE_VALUES:
                quiet = True
            elif value not in _FALSE_VALUES:
                stripped.append(arg)
            continue
        stripped.append(arg)
    if quiet:
        stripped.insert(0, "--quiet")
    return stripped


def _run_version(*, args, current_version: str, stdout) -> int:
    payload = {"cli": "al", "version": current_version}
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        print(f"al {current_version}", file=stdout)
    return EXIT_SUCCESS


def _run_which(*, args, current_version: str, cwd: str, system: System, stdout) -> int:
    current = normalize_current_version(current_version)
    root = system.find_project_root(Path(cwd))
    resolved = resolve_requested_version(system, root, current, load_dispatch_settings(system.getenv))
    if args.json:
        payload = resolved.model_dump()
        payload["project_root"] = str(root) if root is not None else None
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        print(f"{resolved.value} ({resolved.source_label})", file=stdout)
        if resolved.warning:
            print(resolved.warning, file=stdout)
    return EXIT_SUCCESS


def _run_upgrade_prefetch(*, args, system: System, stdout, stderr) -> int:
    path = prefetch_version(args.version, stderr, system=system)
    print(str(path), file=stdout)
    return EXIT_SUCCESS


def execute(
    args: Sequence[str],
    *,
    stdout: TextIO,
    stderr: TextIO,
    current_version: str,
    cwd: str,
    system: System,
) -> int:
    parser = _build_parser()
    try:
        with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            parsed = parser.parse_args(_hoist_quiet_flags(args))
    except SystemExit as exc:
        # argparse exits on --help and on usage errors.
        return EXIT_SUCCESS if exc.code in (None, 0) else EXIT_VALIDATION_ERROR

    try:
        if parsed.command == "version":
            return _run_version(args=parsed, current_version=current_version, stdout=stdout)
        if parsed.command == "which":
            return _run_which(args=parsed, current_version=current_version, cwd=cwd, system=system, stdout=stdout)
        if parsed.command == "upgrade" and parsed.upgrade_command == "prefetch":
            return _run_upgrade_prefetch(args=parsed, system=system, stdout=stdout, stderr=stderr)
    except DispatchError as exc:
        return _print_error(stderr, "error", str(exc), code=_exit_code_for(exc))
    return _print_error(stderr, "error", f"unknown command {parsed.command!r}", code=EXIT_VALIDATION_ERROR)


def run_main(
    argv: Sequence[str],
    *,
    stdout: TextIO,
    stderr: TextIO,
    exit: Callable[[int], None],
    current_version: str | None = None,
    system: System | None = None,
) -> None:
    """Dispatch if needed, otherwise run the local CLI, reporting failures through ``exit``."""
    if current_version is None:
        current_version = package_version()
    try:
        cwd = os.getcwd()
    except OSError as exc:
        exit(_print_error(stderr, "error", f"get working directory: {exc}", code=EXIT_VALIDATION_ERROR))
        return

    if system is None:
        dispatch_stderr = io.StringIO() if has_quiet_flag(argv) else stderr
        system = RealSystem(stderr=dispatch_stderr)

    if not should_bypass_dispatch(argv):
        try:
            outcome = maybe_exec_with_system(system, argv, current_version, cwd, exit)
        except DispatchError as exc:
            exit(_print_error(stderr, "dispatch error", str(exc), code=_exit_code_for(exc)))
            return
        if outcome == DISPATCHED:
            return

    code = execute(
        argv[1:],
        stdout=stdout,
        stderr=stderr,
        current_version=current_version,
        cwd=cwd,
        system=system,
    )
    if code != EXIT_SUCCESS:
        exit(code)


def main() -> None:
    run_main(sys.argv, stdout=sys.stdout, stderr=sys.stderr, exit=sys.exit)


if __name__ == "__main__":
    main()
