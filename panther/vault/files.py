"""
Panther Files — Owner-only file I/O and file-level encrypt/decrypt helpers.

Every OSError is wrapped into ``FileIOError`` carrying the failing path.
"""
import os
import shutil
import logging
from pathlib import Path
from typing import Union

from ..exceptions import FileIOError
from .crypto import decode, encode, rekey

logger = logging.getLogger("panther.vault")

PathLike = Union[str, os.PathLike]

FILE_MODE = 0o600
DIR_MODE = 0o700


def read_file(path: PathLike) -> bytes:
    """Read a file in its entirety.

    Raises:
        FileIOError: If the file cannot be read.
    """
    try:
        with open(path, "rb") as fp:
            return fp.read()
    except OSError as err:
        raise FileIOError(path, err.strerror or str(err)) from err


def write_file(path: PathLike, contents: bytes) -> None:
    """Write ``contents`` to ``path`` and leave it owner read/write only.

    Zero-length contents are valid and produce an empty file.

    Raises:
        FileIOError: If the file cannot be written.
    """
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
        # existing files keep their mode on open
        os.fchmod(fd, FILE_MODE)
        with os.fdopen(fd, "wb") as fp:
            fp.write(contents)
    except OSError as err:
        raise FileIOError(path, err.strerror or str(err)) from err


def file_exists(path: PathLike) -> bool:
    return os.path.isfile(path)


def copy_file(src: PathLike, dst: PathLike) -> None:
    """Copy ``src`` to ``dst`` and restrict ``dst`` to the owner.

    Raises:
        FileIOError: If either side of the copy fails.
    """
    try:
        shutil.copyfile(src, dst)
        os.chmod(dst, FILE_MODE)
    except OSError as err:
        failed = err.filename or dst
        raise FileIOError(failed, err.strerror or str(err)) from err


def remove_file(path: PathLike) -> None:
    """Best-effort unlink; a missing file is not an error."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as err:
        logger.error("Failed to remove %s: %s", path, err)


def make_private_dir(path: PathLike) -> Path:
    """Create ``path`` (and parents) with owner-only permissions."""
    path = Path(path)
    try:
        path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    except OSError as err:
        raise FileIOError(path, err.strerror or str(err)) from err
    return path


def list_files(directory: PathLike, exclude: frozenset[str] = frozenset()) -> list[Path]:
    """List the non-directory entries at the top level of ``directory``.

    Entries are returned sorted by name so processing order is stable.

    Raises:
        FileIOError: If the directory cannot be listed.
    """
    directory = Path(directory)
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as err:
        raise FileIOError(directory, err.strerror or str(err)) from err
    return [
        entry for entry in entries
        if not entry.is_dir() and entry.name not in exclude
    ]


# ---------------------------------------------------------------------------
# File-level crypto
# ---------------------------------------------------------------------------

def encrypt_file_and_save(key: bytes, src: PathLike, dst: PathLike) -> None:
    """Read ``src``, encrypt it and write the envelope to ``dst``."""
    plaintext = read_file(src)
    write_file(dst, encode(key, plaintext).to_bytes())
    logger.debug("Encrypted %s -> %s", src, dst)


def decrypt_file_and_save(key: bytes, src: PathLike, dst: PathLike) -> None:
    """Read the envelope in ``src``, decrypt it and write plaintext to ``dst``."""
    plaintext = decode(key, read_file(src))
    write_file(dst, plaintext)
    logger.debug("Decrypted %s -> %s", src, dst)


def rotate_key_file(old_key: bytes, new_key: bytes, path: PathLike) -> None:
    """Re-encrypt ``path`` in place from ``old_key`` to ``new_key``."""
    envelope = rekey(old_key, new_key, read_file(path))
    write_file(path, envelope.to_bytes())
