"""Terminal helpers: one-line status messages and password prompts."""
import sys
import getpass

from .exceptions import ConfigError
from .vault.crypto import derive_key

_CLEAR = "\r" + " " * 60


def clear_message(stream=None) -> None:
    stream = stream or sys.stderr
    stream.write(_CLEAR)
    stream.flush()


def update_message(message: str, stream=None) -> None:
    """Overwrite the current terminal line with ``message``."""
    stream = stream or sys.stderr
    clear_message(stream)
    stream.write(f"\r{message}")
    stream.flush()


def terminal_message(message: str, stream=None) -> None:
    """Overwrite the current line with ``message`` and end the line."""
    update_message(f"{message}\n", stream)


def read_password(prompt: str = "password: ", confirm: bool = False) -> str:
    """Read a password without echoing it.

    Raises:
        ConfigError: If confirmation is requested and the entries differ.
    """
    password = getpass.getpass(prompt)
    if confirm and getpass.getpass("again: ") != password:
        raise ConfigError("passwords do not match")
    return password


def gather_key(prompt: str = "password: ", confirm: bool = False) -> bytes:
    """Prompt for a password and derive the AES key from it."""
    return derive_key(read_password(prompt, confirm=confirm))
