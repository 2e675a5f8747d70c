"""Versioned binary cache.

Layout: ``<cache-root>/versions/<version>/<os>-<arch>/<asset>`` with a
``<asset>.lock`` sidecar. Entries appear only by atomic rename of a fully
verified temp file, so readers never see partial content.
"""

from __future__ import annotations

import contextlib
import hashlib
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from agent_layer.config import ENV_NO_NETWORK, DispatchSettings, load_dispatch_settings
from agent_layer.errors import CacheIOError, ChecksumMismatchError, NotCachedError
from agent_layer.lock import with_file_lock
from agent_layer.platforms import TOOL_NAME, asset_name

if TYPE_CHECKING:
    from agent_layer.releases import ReleaseSource
    from agent_layer.system import System

CACHE_SUBDIR = "agent-layer"
VERSIONS_DIR = "versions"
LOCK_SUFFIX = ".lock"
HASH_CHUNK_SIZE = 1024 * 1024

DOWNLOADING_MESSAGE = f"Downloading {TOOL_NAME} v{{version}}..."
DOWNLOADED_MESSAGE = f"Downloaded {TOOL_NAME} v{{version}}"


def cache_root_dir(system: System, settings: DispatchSettings | None = None) -> Path:
    if settings is None:
        settings = load_dispatch_settings(system.getenv)
    if settings.cache_dir:
        return Path(settings.cache_dir)
    return system.user_cache_dir() / CACHE_SUBDIR


def cached_binary_path(cache_root: Path, version: str, os_name: str, arch: str) -> Path:
    return Path(cache_root) / VERSIONS_DIR / version / f"{os_name}-{arch}" / asset_name(os_name, arch)


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(HASH_CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as exc:
        raise CacheIOError(f"hash {path}: {exc}") from exc
    return digest.hexdigest()


def verify_checksum(path: Path, expected: str) -> None:
    actual = sha256_file(path)
    if actual != expected.strip().lower():
        raise ChecksumMismatchError(f"checksum mismatch for {path} (expected {expected}, got {actual})")


def _exists(path: Path) -> bool:
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise CacheIOError(f"check cached binary {path}: {exc}") from exc
    return True


def _fill(
    source: ReleaseSource,
    bin_path: Path,
    version: str,
    asset: str,
    progress: TextIO | None,
) -> None:
    # Another process may have finished the fill while we waited for the lock.
    if _exists(bin_path):
        return

    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f"{asset}.tmp-", dir=bin_path.parent)
    except OSError as exc:
        raise CacheIOError(f"create temp file in {bin_path.parent}: {exc}") from exc

    committed = False
    try:
        if progress is not None:
            print(DOWNLOADING_MESSAGE.format(version=version), file=progress)
        with os.fdopen(fd, "w+b") as handle:
            source.download_asset(version, asset, handle)
            try:
                handle.flush()
                os.fsync(handle.fileno())
            except OSError as exc:
                raise CacheIOError(f"sync temp file {tmp_name}: {exc}") from exc

        expected = source.fetch_checksum(version, asset)
        verify_checksum(Path(tmp_name), expected)

        try:
            os.chmod(tmp_name, 0o755)
        except OSError as exc:
            raise CacheIOError(f"chmod cached binary {tmp_name}: {exc}") from exc
        try:
            os.replace(tmp_name, bin_path)
        except OSError as exc:
            raise CacheIOError(f"move cached binary into place at {bin_path}: {exc}") from exc
        committed = True
    finally:
        if not committed:
            with contextlib.suppress(FileNotFoundError):
                os.remove(tmp_name)

    if progress is not None:
        print(DOWNLOADED_MESSAGE.format(version=version), file=progress)


def ensure_cached_binary(
    system: System,
    cache_root: Path,
    version: str,
    progress: TextIO | None = None,
    *,
    settings: DispatchSettings | None = None,
    lock_timeout: float | None = None,
) -> Path:
    """Return the cached binary for ``version``, downloading it first if needed.

    The already-cached case takes no lock and makes no network calls.
    """
    if settings is None:
        settings = load_dispatch_settings(system.getenv)
    os_name, arch = system.platform()
    asset = asset_name(os_name, arch)
    bin_path = cached_binary_path(cache_root, version, os_name, arch)
    if _exists(bin_path):
        return bin_path

    if settings.no_network:
        raise NotCachedError(
            f"version {version} is not cached (expected at {bin_path}); "
            f"network access disabled via {ENV_NO_NETWORK}"
        )

    try:
        bin_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise CacheIOError(f"create cache dir {bin_path.parent}: {exc}") from exc

    source = system.release_source(settings)
    lock_kwargs = {} if lock_timeout is None else {"timeout": lock_timeout}
    lock_path = bin_path.with_name(bin_path.name + LOCK_SUFFIX)
    try:
        with_file_lock(lock_path, lambda: _fill(source, bin_path, version, asset, progress), **lock_kwargs)
    finally:
        source.close()
    return bin_path
