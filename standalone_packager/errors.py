"""Exception types raised by the packaging pipeline.

Every error derives from :class:`PackagingError` so callers (the CLI, a build
invoker) can treat any pipeline failure uniformly. A missing screenshot is not
an error and has no exception type; it is only logged.
"""


class PackagingError(RuntimeError):
    """Base class for all standalone packaging failures."""


class ConfigError(PackagingError, ValueError):
    """Raised when the invocation options cannot be resolved."""


class NetworkError(PackagingError):
    """Raised when the content archive cannot be downloaded."""


class ArchiveFormatError(PackagingError):
    """Raised when the content archive is unreadable or lacks valid metadata."""


class FilesystemError(PackagingError):
    """Raised when copying, writing or deleting a build input fails."""


class BackupSourceMissingError(FilesystemError):
    """Raised when asked to back up a file that does not exist."""


class CleanupError(FilesystemError):
    """Raised after cleanup when one or more independent steps failed.

    :ivar failures: The individual step errors, in the order they occurred.
    """

    def __init__(self, failures: list[PackagingError]) -> None:
        self.failures: list[PackagingError] = list(failures)
        joined: str = "; ".join(str(f) for f in self.failures)
        super().__init__(f"Cleanup finished with {len(self.failures)} failed step(s): {joined}")


class AssembleError(PackagingError):
    """Raised when the external assemble command fails."""
