"""Panther Vault — encrypted files, edit sessions and key rotation.

Security Note (Threat Model):
    Envelopes use AES-128-CBC without authentication, keyed by a truncated
    SHA-256 of the password. A tampered file fails to decrypt at best and
    decrypts to garbage at worst. During an edit session the plaintext lives
    in a staging file readable only by the owner; anyone able to read that
    user's files (or memory) can read the secret while it is being edited.
"""

from .config import PantherConfig, DEFAULT_ALLOWED_EDITORS
from .crypto import EncryptedEnvelope, derive_key, encode, decode, rekey
from .files import encrypt_file_and_save, decrypt_file_and_save, rotate_key_file
from .edit_session import EditSession, SessionState, FileEvent, EventKind, edit_file
from .key_rotation import (
    rotate_directory,
    validate_key,
    write_marker,
    restore_backup,
)

__all__ = [
    "PantherConfig",
    "DEFAULT_ALLOWED_EDITORS",
    "EncryptedEnvelope",
    "derive_key",
    "encode",
    "decode",
    "rekey",
    "encrypt_file_and_save",
    "decrypt_file_and_save",
    "rotate_key_file",
    "EditSession",
    "SessionState",
    "FileEvent",
    "EventKind",
    "edit_file",
    "rotate_directory",
    "validate_key",
    "write_marker",
    "restore_backup",
]
