from __future__ import annotations

import hashlib
import io
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

import pytest

from agent_layer.errors import ChecksumNotFoundError
from agent_layer.releases import parse_checksum_manifest


class FakeReleaseSource:
    def __init__(self, payload: bytes = b"#!/bin/sh\necho al\n", *, manifest: str | None = None, delay: float = 0.0):
        self.payload = payload
        self.manifest = manifest
        self.delay = delay
        self.download_calls = 0
        self.checksum_calls = 0
        self.close_calls = 0
        self._counter_lock = threading.Lock()

    def download_asset(self, version: str, asset: str, dest: IO[bytes]) -> None:  # noqa: ARG002
        with self._counter_lock:
            self.download_calls += 1
        if self.delay:
            time.sleep(self.delay)
        dest.write(self.payload)

    def fetch_checksum(self, version: str, asset: str) -> str:  # noqa: ARG002
        with self._counter_lock:
            self.checksum_calls += 1
        manifest = self.manifest
        if manifest is None:
            manifest = f"{hashlib.sha256(self.payload).hexdigest()}  ./{asset}\n"
        expected = parse_checksum_manifest(manifest.splitlines(), asset)
        if expected is None:
            raise ChecksumNotFoundError(f"checksum for {asset} not found in checksums.txt")
        return expected

    def close(self) -> None:
        with self._counter_lock:
            self.close_calls += 1


@dataclass
class FakeSystem:
    cache_dir: Path
    env: dict[str, str] = field(default_factory=dict)
    root: Path | None = None
    platform_pair: tuple[str, str] = ("linux", "amd64")
    source: FakeReleaseSource = field(default_factory=FakeReleaseSource)
    stderr: io.StringIO = field(default_factory=io.StringIO)
    read_errors: dict[Path, OSError] = field(default_factory=dict)
    reads: list[Path] = field(default_factory=list)
    launches: list[tuple[str, list[str], dict[str, str]]] = field(default_factory=list)
    source_requests: int = 0
    root_lookups: list[Path] = field(default_factory=list)

    def getenv(self, key: str) -> str:
        return self.env.get(key, "")

    def environ(self) -> dict[str, str]:
        return dict(self.env)

    def read_file(self, path: Path) -> bytes:
        self.reads.append(Path(path))
        if Path(path) in self.read_errors:
            raise self.read_errors[Path(path)]
        return Path(path).read_bytes()

    def user_cache_dir(self) -> Path:
        return self.cache_dir

    def find_project_root(self, start: Path) -> Path | None:
        self.root_lookups.append(Path(start))
        return self.root

    def platform(self) -> tuple[str, str]:
        return self.platform_pair

    def release_source(self, settings):  # noqa: ANN001, ARG002
        self.source_requests += 1
        return self.source

    def replace_process(self, path, args, env, exit):  # noqa: ANN001, ARG002
        self.launches.append((path, list(args), dict(env)))


def write_pin(root: Path, text: str) -> Path:
    marker = root / ".agent-layer"
    marker.mkdir(parents=True, exist_ok=True)
    path = marker / "al.version"
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def fake_system(tmp_path) -> FakeSystem:
    return FakeSystem(cache_dir=tmp_path / "user-cache")
