"""
Panther Key Rotation — Re-encrypt every file in a directory under a new key.

Before anything is rewritten, every top-level file (and the ``.panther``
marker, when present) is copied into a fresh backup directory under the
configured backup root, together with a ``manifest.json`` describing where
the copies came from. Files are then re-keyed one by one. Rotation stops at
the first failure: files already processed stay under the new key, the rest
stay under the old key, and the backup is kept so the caller can decide
whether to ``restore_backup``. Rotation is not atomic across files.

Security Note:
    Plaintext exists in memory only while a single file is being re-keyed.
    Backups hold ciphertext only. Never log keys or plaintext.
"""
import os
import shutil
import tempfile
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson

from ..exceptions import (
    CryptoError,
    FileIOError,
    ParseError,
    PantherError,
    RotationError,
    ValidationError,
)
from .crypto import decode, encode
from .files import (
    copy_file,
    file_exists,
    list_files,
    make_private_dir,
    read_file,
    rotate_key_file,
    write_file,
)

logger = logging.getLogger("panther.vault")

MARKER_NAME = ".panther"
MARKER_TEXT = b"panther"
MANIFEST_NAME = "manifest.json"


# ---------------------------------------------------------------------------
# Marker file
# ---------------------------------------------------------------------------

def marker_path(directory) -> Path:
    return Path(directory) / MARKER_NAME


def validate_key(key: bytes, directory) -> bool:
    """Check ``key`` against the directory's marker file.

    A directory without a marker accepts any key.
    """
    marker = marker_path(directory)
    if not file_exists(marker):
        return True
    try:
        return decode(key, read_file(marker)) == MARKER_TEXT
    except (ParseError, CryptoError) as err:
        logger.debug("Marker check failed for %s: %s", directory, err)
        return False


def write_marker(key: bytes, directory) -> Path:
    """Create or replace the directory's marker under ``key``."""
    marker = marker_path(directory)
    write_file(marker, encode(key, MARKER_TEXT).to_bytes())
    return marker


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------

def create_backup(directory, files: list[Path], backup_root) -> Path:
    """Copy ``files`` and the marker into a new directory under ``backup_root``.

    A partially written backup is removed before the error propagates.

    Returns:
        Path of the new backup directory.

    Raises:
        FileIOError: If any copy fails.
    """
    directory = Path(directory)
    root = make_private_dir(backup_root)
    try:
        backup_dir = Path(tempfile.mkdtemp(prefix=f"{directory.name}-", dir=root))
    except OSError as err:
        raise FileIOError(root, err.strerror or str(err)) from err

    names = [path.name for path in files]
    marker = marker_path(directory)
    if file_exists(marker):
        names.append(MARKER_NAME)
    try:
        for name in names:
            copy_file(directory / name, backup_dir / name)
        manifest = {
            "source": str(directory.resolve()),
            "files": names,
            "created": datetime.now(timezone.utc).isoformat(),
        }
        write_file(
            backup_dir / MANIFEST_NAME,
            orjson.dumps(manifest, option=orjson.OPT_INDENT_2),
        )
    except FileIOError:
        shutil.rmtree(backup_dir, ignore_errors=True)
        raise
    logger.info("Backed up %d file(s) from %s to %s", len(names), directory, backup_dir)
    return backup_dir


def read_manifest(backup_dir) -> dict[str, Any]:
    """Load a backup's manifest.

    Raises:
        FileIOError: If the manifest is missing.
        ParseError: If the manifest is not valid JSON.
    """
    path = Path(backup_dir) / MANIFEST_NAME
    try:
        manifest = orjson.loads(read_file(path))
    except orjson.JSONDecodeError as err:
        raise ParseError(f"{path}: invalid backup manifest") from err
    if not isinstance(manifest, dict) or "source" not in manifest:
        raise ParseError(f"{path}: invalid backup manifest")
    return manifest


def restore_backup(backup_dir) -> list[Path]:
    """Copy every file of a backup over its original location.

    The backup itself is kept.

    Returns:
        Paths that were restored.
    """
    backup_dir = Path(backup_dir)
    manifest = read_manifest(backup_dir)
    source = Path(manifest["source"])
    restored = []
    for name in manifest.get("files", []):
        copy_file(backup_dir / name, source / name)
        restored.append(source / name)
    logger.info("Restored %d file(s) from %s to %s", len(restored), backup_dir, source)
    return restored


def discard_backup(backup_dir) -> None:
    """Delete a backup directory.

    Raises:
        FileIOError: If the directory cannot be removed.
    """
    try:
        shutil.rmtree(backup_dir)
    except OSError as err:
        raise FileIOError(backup_dir, err.strerror or str(err)) from err


# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------

def rotate_directory(directory, old_key: bytes, new_key: bytes, backup_root) -> dict:
    """Re-encrypt every top-level file of ``directory`` from old_key to new_key.

    Args:
        directory: Directory whose files are rotated.
        old_key: Key the files are currently encrypted with.
        new_key: Key to re-encrypt them with.
        backup_root: Directory under which the backup is created.

    Returns:
        Stats dict with keys: total, rotated, marker.

    Raises:
        ValidationError: If ``old_key`` fails the marker check.
        FileIOError: If the directory cannot be listed or backed up.
        RotationError: If a file fails to re-key; the backup is kept.
    """
    directory = Path(directory)
    if not os.path.isdir(directory):
        raise FileIOError(directory, "not a directory")
    if not validate_key(old_key, directory):
        raise ValidationError(f"{directory}: key does not match the directory marker")

    files = list_files(directory, exclude=frozenset({MARKER_NAME}))
    backup_dir = create_backup(directory, files, backup_root)
    stats = {"total": len(files), "rotated": 0, "marker": None}

    logger.info("Starting key rotation of %d file(s) in %s", len(files), directory)

    rotated: list[Path] = []
    for path in files:
        try:
            rotate_key_file(old_key, new_key, path)
        except PantherError as err:
            logger.error(
                "Error rotating %s: %s (backup kept at %s)", path, err, backup_dir,
            )
            raise RotationError(
                str(err), backup_dir=backup_dir, failed=path, rotated=rotated,
            ) from err
        rotated.append(path)
        stats["rotated"] += 1

    stats["marker"] = str(write_marker(new_key, directory))
    discard_backup(backup_dir)

    logger.info("Key rotation complete: %s", stats)
    return stats
