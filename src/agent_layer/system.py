"""OS capabilities used by version dispatch.

Everything dispatch touches outside the process (environment, files,
network, process replacement, stderr) goes through a ``System`` so tests
can substitute a fake without patching module globals.
"""

from __future__ import annotations

import os
import stat
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Protocol, Sequence, TextIO

from agent_layer.config import DispatchSettings
from agent_layer.errors import CacheIOError, ProjectRootError
from agent_layer.launcher import ProcessLauncher, select_launcher
from agent_layer.platforms import current_platform
from agent_layer.releases import ReleaseClient, ReleaseSource

MARKER_DIR = ".agent-layer"


class System(Protocol):
    @property
    def stderr(self) -> TextIO:
        ...

    def getenv(self, key: str) -> str:
        ...

    def environ(self) -> dict[str, str]:
        ...

    def read_file(self, path: Path) -> bytes:
        ...

    def user_cache_dir(self) -> Path:
        ...

    def find_project_root(self, start: Path) -> Path | None:
        ...

    def platform(self) -> tuple[str, str]:
        ...

    def release_source(self, settings: DispatchSettings) -> ReleaseSource:
        ...

    def replace_process(
        self,
        path: str,
        args: Sequence[str],
        env: Mapping[str, str],
        exit: Callable[[int], None],
    ) -> None:
        ...


def find_project_root(start: Path) -> Path | None:
    """Return the nearest ancestor of ``start`` holding a ``.agent-layer`` directory."""
    current = Path(os.path.abspath(start))
    for candidate in (current, *current.parents):
        marker = candidate / MARKER_DIR
        try:
            info = marker.stat()
        except (FileNotFoundError, NotADirectoryError):
            continue
        except OSError as exc:
            raise ProjectRootError(f"check {marker}: {exc}") from exc
        if stat.S_ISDIR(info.st_mode):
            return candidate
    return None


def user_cache_dir(
    getenv: Callable[[str], str] | None = None,
    platform_name: str | None = None,
) -> Path:
    """Per-user cache base directory, following each OS's convention."""
    lookup = getenv if getenv is not None else (lambda key: os.environ.get(key, ""))
    name = sys.platform if platform_name is None else platform_name

    if name.startswith("win"):
        local_app_data = lookup("LOCALAPPDATA").strip()
        if not local_app_data:
            raise CacheIOError("resolve user cache dir: %LOCALAPPDATA% is not defined")
        return Path(local_app_data)

    home = lookup("HOME").strip()
    if name == "darwin":
        if not home:
            raise CacheIOError("resolve user cache dir: $HOME is not defined")
        return Path(home) / "Library" / "Caches"

    xdg_cache = lookup("XDG_CACHE_HOME").strip()
    if xdg_cache:
        if not os.path.isabs(xdg_cache):
            raise CacheIOError("resolve user cache dir: path in $XDG_CACHE_HOME is relative")
        return Path(xdg_cache)
    if not home:
        raise CacheIOError("resolve user cache dir: neither $XDG_CACHE_HOME nor $HOME are defined")
    return Path(home) / ".cache"


@dataclass
class RealSystem:
    stderr: TextIO = field(default_factory=lambda: sys.stderr)
    launcher: ProcessLauncher = field(default_factory=select_launcher)

    def getenv(self, key: str) -> str:
        return os.environ.get(key, "")

    def environ(self) -> dict[str, str]:
        return dict(os.environ)

    def read_file(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def user_cache_dir(self) -> Path:
        return user_cache_dir(self.getenv)

    def find_project_root(self, start: Path) -> Path | None:
        return find_project_root(start)

    def platform(self) -> tuple[str, str]:
        return current_platform()

    def release_source(self, settings: DispatchSettings) -> ReleaseSource:
        return ReleaseClient(
            base_url=settings.releases_base_url,
            max_download_bytes=settings.max_download_bytes,
        )

    def replace_process(
        self,
        path: str,
        args: Sequence[str],
        env: Mapping[str, str],
        exit: Callable[[int], None],
    ) -> None:
        self.launcher.launch(path, args, env, exit)
