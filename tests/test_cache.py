from __future__ import annotations

import hashlib
import multiprocessing
import os
import stat
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from agent_layer.cache import cache_root_dir, cached_binary_path, ensure_cached_binary, verify_checksum
from agent_layer.errors import ChecksumMismatchError, ChecksumNotFoundError, NetworkError, NotCachedError
from conftest import FakeReleaseSource, FakeSystem

pytest.importorskip("fcntl")


def _leftovers(directory) -> list[str]:  # noqa: ANN001
    return sorted(name for name in os.listdir(directory) if ".tmp-" in name)


class _RecordingSource(FakeReleaseSource):
    """Appends one line per download to a file shared across processes."""

    def __init__(self, record: str) -> None:
        super().__init__(payload=b"y" * 4096, delay=0.3)
        self.record = record

    def download_asset(self, version, asset, dest):  # noqa: ANN001
        with open(self.record, "a", encoding="utf-8") as handle:
            handle.write(f"{os.getpid()}\n")
        super().download_asset(version, asset, dest)


def _fill_in_child(cache_dir: str, cache_root: str, record: str, start) -> None:  # noqa: ANN001
    start.wait(10)
    system = FakeSystem(cache_dir=Path(cache_dir), source=_RecordingSource(record))
    ensure_cached_binary(system, Path(cache_root), "0.6.1")


def test_cache_miss_downloads_verifies_and_installs(tmp_path, fake_system) -> None:
    cache_root = tmp_path / "cache"

    path = ensure_cached_binary(fake_system, cache_root, "0.6.1", fake_system.stderr)

    assert path == cache_root / "versions" / "0.6.1" / "linux-amd64" / "al-linux-amd64"
    assert path.read_bytes() == fake_system.source.payload
    assert path.stat().st_mode & stat.S_IXUSR
    assert (path.parent / "al-linux-amd64.lock").exists()
    assert _leftovers(path.parent) == []
    assert fake_system.stderr.getvalue() == "Downloading al v0.6.1...\nDownloaded al v0.6.1\n"


def test_second_call_hits_fast_path(tmp_path, fake_system) -> None:
    cache_root = tmp_path / "cache"

    first = ensure_cached_binary(fake_system, cache_root, "0.6.1")
    second = ensure_cached_binary(fake_system, cache_root, "0.6.1")

    assert first == second
    assert fake_system.source.download_calls == 1
    assert fake_system.source.checksum_calls == 1
    assert fake_system.source_requests == 1


def test_cached_entry_skips_lock_and_network(tmp_path, fake_system, monkeypatch) -> None:
    cache_root = tmp_path / "cache"
    path = cached_binary_path(cache_root, "0.6.1", "linux", "amd64")
    path.parent.mkdir(parents=True)
    path.write_bytes(b"cached")

    def no_lock(*args, **kwargs):  # noqa: ANN002, ANN003
        raise AssertionError("lock must not be taken for a cached entry")

    monkeypatch.setattr("agent_layer.cache.with_file_lock", no_lock)

    assert ensure_cached_binary(fake_system, cache_root, "0.6.1") == path
    assert fake_system.source_requests == 0


def test_checksum_mismatch_installs_nothing(tmp_path, fake_system) -> None:
    cache_root = tmp_path / "cache"
    fake_system.source = FakeReleaseSource(manifest=f"{'0' * 64}  al-linux-amd64\n")

    with pytest.raises(ChecksumMismatchError, match="checksum mismatch"):
        ensure_cached_binary(fake_system, cache_root, "0.6.1", fake_system.stderr)

    path = cached_binary_path(cache_root, "0.6.1", "linux", "amd64")
    assert not path.exists()
    assert _leftovers(path.parent) == []
    assert "Downloaded al" not in fake_system.stderr.getvalue()


def test_missing_manifest_line_installs_nothing(tmp_path, fake_system) -> None:
    cache_root = tmp_path / "cache"
    fake_system.source = FakeReleaseSource(manifest=f"{'a' * 64}  al-darwin-arm64\n")

    with pytest.raises(ChecksumNotFoundError, match="checksum for al-linux-amd64 not found"):
        ensure_cached_binary(fake_system, cache_root, "0.6.1")

    path = cached_binary_path(cache_root, "0.6.1", "linux", "amd64")
    assert not path.exists()
    assert _leftovers(path.parent) == []


def test_download_failure_discards_temp_file(tmp_path, fake_system) -> None:
    cache_root = tmp_path / "cache"

    class _Broken(FakeReleaseSource):
        def download_asset(self, version, asset, dest):  # noqa: ANN001
            dest.write(b"partial")
            raise NetworkError("download failed: connection reset")

    fake_system.source = _Broken()

    with pytest.raises(NetworkError):
        ensure_cached_binary(fake_system, cache_root, "0.6.1")

    path = cached_binary_path(cache_root, "0.6.1", "linux", "amd64")
    assert not path.exists()
    assert _leftovers(path.parent) == []


def test_failed_fill_can_be_retried(tmp_path, fake_system) -> None:
    cache_root = tmp_path / "cache"
    fake_system.source = FakeReleaseSource(manifest=f"{'0' * 64}  al-linux-amd64\n")
    with pytest.raises(ChecksumMismatchError):
        ensure_cached_binary(fake_system, cache_root, "0.6.1")

    fake_system.source = FakeReleaseSource()
    path = ensure_cached_binary(fake_system, cache_root, "0.6.1")
    assert path.exists()


def test_no_network_cache_miss_fails_fast(tmp_path, fake_system) -> None:
    cache_root = tmp_path / "cache"
    fake_system.env["AL_NO_NETWORK"] = "1"

    with pytest.raises(NotCachedError) as excinfo:
        ensure_cached_binary(fake_system, cache_root, "0.6.1")

    expected = cached_binary_path(cache_root, "0.6.1", "linux", "amd64")
    assert str(expected) in str(excinfo.value)
    assert "AL_NO_NETWORK" in str(excinfo.value)
    assert fake_system.source_requests == 0
    assert not expected.parent.exists()


def test_no_network_still_serves_cached_entry(tmp_path, fake_system) -> None:
    cache_root = tmp_path / "cache"
    path = ensure_cached_binary(fake_system, cache_root, "0.6.1")
    fake_system.env["AL_NO_NETWORK"] = "1"
    assert ensure_cached_binary(fake_system, cache_root, "0.6.1") == path


def test_concurrent_fills_download_once(tmp_path, fake_system) -> None:
    cache_root = tmp_path / "cache"
    fake_system.source = FakeReleaseSource(payload=b"x" * 4096, delay=0.2)

    with ThreadPoolExecutor(max_workers=6) as pool:
        paths = list(pool.map(lambda _: ensure_cached_binary(fake_system, cache_root, "0.6.1"), range(6)))

    assert len(set(paths)) == 1
    assert paths[0].read_bytes() == b"x" * 4096
    assert fake_system.source.download_calls == 1
    assert _leftovers(paths[0].parent) == []


@pytest.mark.skipif("fork" not in multiprocessing.get_all_start_methods(), reason="needs fork")
def test_concurrent_fills_across_processes_download_once(tmp_path) -> None:
    cache_root = tmp_path / "cache"
    record = tmp_path / "downloads.log"
    ctx = multiprocessing.get_context("fork")
    start = ctx.Event()
    workers = [
        ctx.Process(target=_fill_in_child, args=(str(tmp_path / "user-cache"), str(cache_root), str(record), start))
        for _ in range(4)
    ]
    for worker in workers:
        worker.start()
    start.set()
    for worker in workers:
        worker.join(60)

    assert [worker.exitcode for worker in workers] == [0, 0, 0, 0]
    assert len(record.read_text(encoding="utf-8").splitlines()) == 1
    path = cached_binary_path(cache_root, "0.6.1", "linux", "amd64")
    assert path.read_bytes() == b"y" * 4096
    assert _leftovers(path.parent) == []


def test_versions_are_cached_separately(tmp_path, fake_system) -> None:
    cache_root = tmp_path / "cache"
    a = ensure_cached_binary(fake_system, cache_root, "0.6.1")
    b = ensure_cached_binary(fake_system, cache_root, "0.7.0")
    assert a != b
    assert fake_system.source.download_calls == 2


def test_cache_root_honors_override(tmp_path, fake_system) -> None:
    fake_system.env["AL_CACHE_DIR"] = str(tmp_path / "override")
    assert cache_root_dir(fake_system) == tmp_path / "override"


def test_cache_root_defaults_to_user_cache(fake_system) -> None:
    assert cache_root_dir(fake_system) == fake_system.cache_dir / "agent-layer"


def test_verify_checksum_is_case_insensitive(tmp_path) -> None:
    path = tmp_path / "blob"
    path.write_bytes(b"content")
    verify_checksum(path, hashlib.sha256(b"content").hexdigest().upper())


def test_release_source_is_closed_after_fill(tmp_path, fake_system) -> None:
    cache_root = tmp_path / "cache"
    ensure_cached_binary(fake_system, cache_root, "0.6.1")
    assert fake_system.source.close_calls == 1

    fake_system.source = FakeReleaseSource(manifest=f"{'0' * 64}  al-linux-amd64\n")
    with pytest.raises(ChecksumMismatchError):
        ensure_cached_binary(fake_system, cache_root, "0.7.0")
    assert fake_system.source.close_calls == 1
