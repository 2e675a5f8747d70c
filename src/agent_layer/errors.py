"""Dispatch error types."""

from __future__ import annotations


class DispatchError(RuntimeError):
    """Base dispatch error."""


class ConfigurationError(DispatchError):
    """Build, override, or platform configuration is unusable."""


class InvalidVersionError(ConfigurationError, ValueError):
    """A version string is not X.Y.Z."""


class UnsupportedPlatformError(ConfigurationError):
    """The running OS or architecture has no published release asset."""


class DevVersionError(ConfigurationError):
    """Dev builds are never a hand-off target."""


class PreconditionError(ConfigurationError):
    """A required dispatch input was not supplied."""


class SystemRequiredError(PreconditionError):
    """No system capability was supplied."""


class MissingArgv0Error(PreconditionError):
    """The argument vector is empty."""


class WorkingDirRequiredError(PreconditionError):
    """The working directory is empty."""


class ExitHandlerRequiredError(PreconditionError):
    """No exit callback was supplied."""


class PinReadError(DispatchError):
    """The pin file exists but could not be read."""


class ProjectRootError(DispatchError):
    """The project root could not be located."""


class CacheIOError(DispatchError):
    """A cache directory or file operation failed."""


class LaunchError(DispatchError):
    """The cached binary could not be started."""


class NetworkError(DispatchError):
    """The release host could not be reached or returned an error."""

    def __init__(self, message: str, *, url: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class DownloadTimeoutError(NetworkError):
    """A release request timed out."""


class ReleaseNotFoundError(NetworkError):
    """The release host returned 404 for a release file."""


class UnexpectedStatusError(NetworkError):
    """The release host returned a non-200 status other than 404."""


class DownloadTooLargeError(NetworkError):
    """A response body exceeded the download size ceiling."""


class IntegrityError(DispatchError):
    """Downloaded content could not be verified."""


class ChecksumNotFoundError(IntegrityError):
    """The checksum manifest has no line for the asset."""


class ChecksumMismatchError(IntegrityError):
    """The downloaded asset hash differs from the manifest."""


class NotCachedError(DispatchError):
    """The version is not cached and downloads are disabled."""


class LockError(DispatchError):
    """A cache lock could not be opened or acquired."""


class LockTimeoutError(LockError):
    """Timed out waiting for a cache lock."""


class DispatchLoopError(DispatchError):
    """A dispatched child attempted to dispatch again."""
