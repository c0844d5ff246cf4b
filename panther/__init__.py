"""Panther — edit encrypted files in place with your own text editor."""
from .version import __version__
from .exceptions import (
    PantherError,
    ConfigError,
    FileIOError,
    ParseError,
    CryptoError,
    ValidationError,
    RotationError,
)

__all__ = [
    "__version__",
    "PantherError",
    "ConfigError",
    "FileIOError",
    "ParseError",
    "CryptoError",
    "ValidationError",
    "RotationError",
]
