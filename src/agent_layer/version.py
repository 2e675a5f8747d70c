"""Release version normalization."""

from __future__ import annotations

import re

from agent_layer.errors import InvalidVersionError

DEV_VERSION = "dev"

_VERSION_RE = re.compile(r"^[vV]?(?P<major>[0-9]+)\.(?P<minor>[0-9]+)\.(?P<patch>[0-9]+)$")


def is_dev_version(value: str) -> bool:
    return value.strip() == DEV_VERSION


def normalize_version(value: str) -> str:
    """Return ``value`` as canonical ``X.Y.Z``.

    A leading ``v`` is accepted and dropped; leading zeros in each
    component are removed. Anything else raises ``InvalidVersionError``.
    """
    raw = value.strip()
    if not raw:
        raise InvalidVersionError("version must not be empty")
    match = _VERSION_RE.match(raw)
    if match is None:
        raise InvalidVersionError(f"version {raw!r} must be in X.Y.Z form")
    return ".".join(str(int(match.group(part))) for part in ("major", "minor", "patch"))
