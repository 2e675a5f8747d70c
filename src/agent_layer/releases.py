"""Release host client: asset downloads and checksum manifests."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import IO, Callable, Iterable, Protocol, TypeVar

import requests

from agent_layer.config import DEFAULT_MAX_DOWNLOAD_BYTES, DEFAULT_RELEASES_BASE_URL
from agent_layer.errors import (
    ChecksumNotFoundError,
    DownloadTimeoutError,
    DownloadTooLargeError,
    NetworkError,
    ReleaseNotFoundError,
    UnexpectedStatusError,
)

REQUEST_TIMEOUT = 30.0
DOWNLOAD_RETRY_COUNT = 1
DOWNLOAD_RETRY_BACKOFF = 0.25
DOWNLOAD_CHUNK_SIZE = 64 * 1024
CHECKSUMS_FILENAME = "checksums.txt"

RELEASE_NOT_FOUND_MESSAGE = (
    "download {url}: release not found (HTTP 404)\n\n"
    "The requested version may not exist or may have been removed.\n"
    "Remediation:\n"
    "  - Verify the version exists at {base_url}\n"
    "  - If this repo is pinned to a bad version, install a valid `al` release and run: al upgrade\n"
    "  - Or edit .agent-layer/al.version to a valid version (X.Y.Z)"
)
DOWNLOAD_TIMEOUT_MESSAGE = (
    "download {url}: request timed out\n\n"
    "Remediation:\n"
    "  - Check your internet connection\n"
    "  - If behind a proxy, ensure HTTP_PROXY/HTTPS_PROXY are set\n"
    "  - Retry the command\n"
    "  - To work offline with a previously cached version, set AL_NO_NETWORK=1"
)

T = TypeVar("T")


class ReleaseSource(Protocol):
    def download_asset(self, version: str, asset: str, dest: IO[bytes]) -> None:
        ...

    def fetch_checksum(self, version: str, asset: str) -> str:
        ...

    def close(self) -> None:
        ...


def parse_checksum_manifest(lines: Iterable[str], asset: str) -> str | None:
    """Return the hex digest listed for ``asset``, or ``None``.

    Lines look like ``<sha256>  <name>``; a leading ``./`` or ``*`` on the
    name is ignored.
    """
    for line in lines:
        fields = line.split()
        if len(fields) < 2:
            continue
        name = fields[1]
        if name.startswith("./"):
            name = name[2:]
        if name.startswith("*"):
            name = name[1:]
        if name == asset:
            return fields[0].lower()
    return None


@dataclass
class ReleaseClient:
    base_url: str = DEFAULT_RELEASES_BASE_URL
    timeout: float = REQUEST_TIMEOUT
    max_download_bytes: int = DEFAULT_MAX_DOWNLOAD_BYTES
    retries: int = DOWNLOAD_RETRY_COUNT
    retry_backoff: float = DOWNLOAD_RETRY_BACKOFF
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self._session = requests.Session()

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> ReleaseClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _url(self, version: str, filename: str) -> str:
        return f"{self.base_url}/download/v{version}/{filename}"

    def asset_url(self, version: str, asset: str) -> str:
        return self._url(version, asset)

    def checksums_url(self, version: str) -> str:
        return self._url(version, CHECKSUMS_FILENAME)

    def _retry(self, attempt: int) -> bool:
        if attempt >= self.retries:
            return False
        self.sleep(self.retry_backoff)
        return True

    def _get(self, url: str, consume: Callable[[requests.Response, float], T]) -> T:
        """GET ``url`` and hand a 200 response to ``consume``.

        Connection errors, timeouts, 5xx statuses, and failures while
        reading the body are retried up to ``retries`` times. A 404 or any
        other status is raised at once.
        """
        for attempt in range(self.retries + 1):
            deadline = self.clock() + self.timeout
            try:
                response = self._session.get(url, stream=True, timeout=self.timeout)
            except requests.Timeout as exc:
                if self._retry(attempt):
                    continue
                raise DownloadTimeoutError(DOWNLOAD_TIMEOUT_MESSAGE.format(url=url), url=url) from exc
            except requests.RequestException as exc:
                if self._retry(attempt):
                    continue
                raise NetworkError(f"download {url}: {exc}", url=url) from exc

            with response:
                status = response.status_code
                if status == 404:
                    raise ReleaseNotFoundError(
                        RELEASE_NOT_FOUND_MESSAGE.format(url=url, base_url=self.base_url),
                        url=url,
                        status_code=status,
                    )
                if status != 200:
                    if 500 <= status <= 599 and self._retry(attempt):
                        continue
                    raise UnexpectedStatusError(
                        f"download {url}: unexpected status {status} {response.reason or ''}".rstrip(),
                        url=url,
                        status_code=status,
                    )
                try:
                    return consume(response, deadline)
                except requests.Timeout as exc:
                    if self._retry(attempt):
                        continue
                    raise DownloadTimeoutError(DOWNLOAD_TIMEOUT_MESSAGE.format(url=url), url=url) from exc
                except requests.RequestException as exc:
                    if self._retry(attempt):
                        continue
                    raise NetworkError(f"read {url}: {exc}", url=url) from exc
        raise NetworkError(f"download {url}: retry budget exhausted", url=url)

    def _check_deadline(self, deadline: float, url: str) -> None:
        if self.clock() > deadline:
            raise requests.Timeout(f"{url} exceeded {self.timeout:g}s")

    def download_asset(self, version: str, asset: str, dest: IO[bytes]) -> None:
        """Stream the release asset into ``dest``, replacing anything already written."""
        url = self.asset_url(version, asset)
        limit = self.max_download_bytes

        def consume(response: requests.Response, deadline: float) -> None:
            dest.seek(0)
            dest.truncate()
            written = 0
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                self._check_deadline(deadline, url)
                if not chunk:
                    continue
                written += len(chunk)
                if written > limit:
                    raise DownloadTooLargeError(
                        f"download {url}: response too large (more than limit {limit} bytes)",
                        url=url,
                    )
                dest.write(chunk)

        self._get(url, consume)

    def fetch_checksum(self, version: str, asset: str) -> str:
        url = self.checksums_url(version)

        def consume(response: requests.Response, deadline: float) -> str | None:
            def lines() -> Iterable[str]:
                for raw in response.iter_lines():
                    self._check_deadline(deadline, url)
                    if isinstance(raw, bytes):
                        raw = raw.decode("utf-8", errors="replace")
                    yield raw

            return parse_checksum_manifest(lines(), asset)

        expected = self._get(url, consume)
        if expected is None:
            raise ChecksumNotFoundError(f"checksum for {asset} not found in {url}")
        return expected
