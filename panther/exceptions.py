"""
Panther exceptions.

Every error raised by the vault layer derives from ``PantherError`` so the
command line can report it uniformly.
"""
from pathlib import Path
from typing import Optional


class PantherError(Exception):
    """Base class for all Panther errors."""


class ConfigError(PantherError):
    """Missing or disallowed editor, or an invalid invocation."""


class FileIOError(PantherError):
    """A read, write or open failed on a specific path."""

    def __init__(self, path, message: str):
        self.path = Path(path)
        super().__init__(f"{path}: {message}")


class ParseError(PantherError):
    """The on-disk envelope is malformed."""


class CryptoError(PantherError):
    """The cipher operation failed.

    Wrong keys and corrupted ciphertext both end up here; callers must not
    try to tell them apart.
    """


class ValidationError(PantherError):
    """A key failed the directory marker check."""


class RotationError(PantherError):
    """Key rotation stopped part way through a directory.

    Attributes:
        backup_dir: Backup directory left in place for a manual restore.
        failed: File whose re-key failed.
        rotated: Files already re-keyed under the new key.
    """

    def __init__(
        self,
        message: str,
        backup_dir: Optional[Path] = None,
        failed: Optional[Path] = None,
        rotated: Optional[list[Path]] = None,
    ):
        super().__init__(message)
        self.backup_dir = backup_dir
        self.failed = failed
        self.rotated = list(rotated or [])
