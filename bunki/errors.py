"""Exception types for Bunki.

Every error raised by the build engine derives from BunkiError so the CLI can
report it uniformly. Errors that carry a file keep the path they refer to.

Key classes:
- CacheCorrupt: The persisted fingerprint store cannot be used.
- CacheWriteError: The fingerprint store could not be written after a build.
- FileUnreadable: A tracked file exists but cannot be read.
- ConfigMissing: An explicitly requested configuration file does not exist.
- ConfigError: The configuration file is not a valid mapping.
- BuildError: Rendering a source file failed.
- BuildLocked: Another build of the same project is in progress.
"""

from __future__ import annotations

from pathlib import Path


class BunkiError(Exception):
    """Base class for all Bunki errors."""


class CacheCorrupt(BunkiError):
    """The persisted fingerprint store cannot be parsed.

    Callers recover by treating the store as empty, which forces a full
    rebuild.

    Attributes:
        cache_file: Path to the offending cache file.
        reason: Short description of what was wrong with it.
    """

    def __init__(self, cache_file: Path, reason: str):
        self.cache_file = cache_file
        self.reason = reason
        super().__init__(f"{cache_file}: {reason}")


class CacheWriteError(BunkiError):
    """The fingerprint store could not be persisted."""

    def __init__(self, cache_file: Path, original_error: OSError):
        self.cache_file = cache_file
        self.original_error = original_error
        super().__init__(f"Could not write build cache {cache_file}: {original_error}")


class FileUnreadable(BunkiError):
    """A tracked file exists but its content cannot be read.

    This is distinct from a missing file, which is a deletion signal.

    Attributes:
        path: Path to the file.
        reason: Description of the underlying OS error.
    """

    def __init__(self, path: Path | str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class ConfigMissing(BunkiError):
    """An explicitly requested configuration file does not exist."""

    def __init__(self, config_path: Path):
        self.config_path = config_path
        super().__init__(f"Config file not found: {config_path}")


class ConfigError(BunkiError):
    """The configuration file exists but is not usable."""


class BuildError(BunkiError):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


class BuildLocked(BunkiError):
    """Another build holds the project's lock file."""

    def __init__(self, lock_file: Path):
        self.lock_file = lock_file
        super().__init__(
            f"Another build appears to be running (lock file {lock_file}). "
            "Remove it if no build is in progress."
        )
