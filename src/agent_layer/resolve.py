"""Target version resolution: override, then pin, then the running build."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Literal, Optional

from pydantic import BaseModel, ConfigDict

from agent_layer.config import ENV_VERSION_OVERRIDE, DispatchSettings, load_dispatch_settings
from agent_layer.errors import InvalidVersionError
from agent_layer.pin import PinnedVersion, PinWarning, read_pinned_version
from agent_layer.version import normalize_version

if TYPE_CHECKING:
    from agent_layer.system import System

VersionSource = Literal["current", "pin", "override"]

SOURCE_CURRENT: VersionSource = "current"
SOURCE_PIN: VersionSource = "pin"
SOURCE_OVERRIDE: VersionSource = "override"


class ResolvedVersion(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    value: str
    source: VersionSource
    warning: Optional[str] = None
    # Set only when an override shadows a valid pin.
    shadowed_pin: Optional[str] = None

    @property
    def source_label(self) -> str:
        if self.source == SOURCE_OVERRIDE:
            return ENV_VERSION_OVERRIDE
        return self.source


def resolve_requested_version(
    system: System,
    root: Path | None,
    current: str,
    settings: DispatchSettings | None = None,
) -> ResolvedVersion:
    """Pick the version this invocation should run.

    ``current`` must already be normalized (or the dev sentinel). The pin
    file is read at most once per call.
    """
    if settings is None:
        settings = load_dispatch_settings(system.getenv)

    override = settings.version_override
    if override:
        try:
            normalized = normalize_version(override)
        except InvalidVersionError as exc:
            raise InvalidVersionError(f"invalid {ENV_VERSION_OVERRIDE}: {exc}") from exc
        if root is None:
            return ResolvedVersion(value=normalized, source=SOURCE_OVERRIDE)
        pinned = read_pinned_version(system, root)
        return ResolvedVersion(
            value=normalized,
            source=SOURCE_OVERRIDE,
            warning=pinned.message if isinstance(pinned, PinWarning) else None,
            shadowed_pin=pinned.version if isinstance(pinned, PinnedVersion) else None,
        )

    if root is not None:
        pinned = read_pinned_version(system, root)
        if isinstance(pinned, PinnedVersion):
            return ResolvedVersion(value=pinned.version, source=SOURCE_PIN)
        if isinstance(pinned, PinWarning):
            return ResolvedVersion(value=current, source=SOURCE_CURRENT, warning=pinned.message)

    return ResolvedVersion(value=current, source=SOURCE_CURRENT)
