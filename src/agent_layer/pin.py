"""Per-project version pin file."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Union

from agent_layer.errors import InvalidVersionError, PinReadError
from agent_layer.system import MARKER_DIR
from agent_layer.version import normalize_version

if TYPE_CHECKING:
    from agent_layer.system import System

PIN_FILENAME = "al.version"
COMMENT_PREFIX = "#"

PIN_EMPTY_WARNING = "warning: pin file {path} is empty; ignoring (run al upgrade to repair)"
PIN_AMBIGUOUS_WARNING = (
    "warning: pin file {path} has multiple version lines (line {first} and line {second}); "
    "ignoring (run al upgrade to repair)"
)
PIN_INVALID_WARNING = (
    "warning: invalid pinned version in {path}: {reason}; ignoring (run al upgrade to repair)"
)


@dataclass(frozen=True)
class PinnedVersion:
    version: str
    path: Path


@dataclass(frozen=True)
class PinWarning:
    """The pin file exists but cannot be used; dispatch falls back."""

    message: str
    path: Path


PinResult = Union[PinnedVersion, PinWarning, None]


def pin_path(root: Path) -> Path:
    return Path(root) / MARKER_DIR / PIN_FILENAME


def parse_pin_text(text: str, path: Path) -> PinnedVersion | PinWarning:
    candidates: list[tuple[int, str]] = []
    # Split on "\n" only so reported line numbers match the file.
    for number, line in enumerate(text.split("\n"), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith(COMMENT_PREFIX):
            continue
        candidates.append((number, stripped))

    if not candidates:
        return PinWarning(PIN_EMPTY_WARNING.format(path=path), path)
    if len(candidates) > 1:
        first, second = candidates[0][0], candidates[1][0]
        return PinWarning(
            PIN_AMBIGUOUS_WARNING.format(path=path, first=first, second=second),
            path,
        )

    try:
        version = normalize_version(candidates[0][1])
    except InvalidVersionError as exc:
        return PinWarning(PIN_INVALID_WARNING.format(path=path, reason=exc), path)
    return PinnedVersion(version, path)


def read_pinned_version(system: System, root: Path) -> PinResult:
    """Read ``<root>/.agent-layer/al.version``.

    Returns ``None`` when the file does not exist, a ``PinWarning`` when it
    is empty, ambiguous, or invalid, and a ``PinnedVersion`` otherwise.
    Any other read failure raises ``PinReadError``.
    """
    path = pin_path(root)
    try:
        data = system.read_file(path)
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise PinReadError(f"read {path}: {exc}") from exc
    return parse_pin_text(data.decode("utf-8", errors="replace"), path)
