"""Process hand-off strategies."""

from __future__ import annotations

import os
import subprocess
import sys
from typing import Callable, Mapping, Protocol, Sequence

from agent_layer.errors import LaunchError


class ProcessLauncher(Protocol):
    def launch(
        self,
        path: str,
        args: Sequence[str],
        env: Mapping[str, str],
        exit: Callable[[int], None],
    ) -> None:
        ...


class ExecLauncher:
    """Replace the current process image in place.

    ``launch`` only returns by raising; on success the interpreter is gone.
    """

    def launch(
        self,
        path: str,
        args: Sequence[str],
        env: Mapping[str, str],
        exit: Callable[[int], None],  # noqa: ARG002
    ) -> None:
        # Buffered output would be lost with the old image.
        sys.stdout.flush()
        sys.stderr.flush()
        try:
            os.execve(path, list(args), dict(env))
        except OSError as exc:
            raise LaunchError(f"exec {path}: {exc}") from exc


class SpawnLauncher:
    """Run the binary as a child and forward its exit code."""

    def launch(
        self,
        path: str,
        args: Sequence[str],
        env: Mapping[str, str],
        exit: Callable[[int], None],
    ) -> None:
        try:
            completed = subprocess.run(list(args), executable=path, env=dict(env), check=False)
        except OSError as exc:
            raise LaunchError(f"start {path}: {exc}") from exc
        code = completed.returncode
        exit(code if code >= 0 else 1)


def select_launcher(platform_name: str | None = None) -> ProcessLauncher:
    name = sys.platform if platform_name is None else platform_name
    if name.startswith("win") or not hasattr(os, "execve"):
        return SpawnLauncher()
    return ExecLauncher()
