"""
Panther Crypto Core — Key derivation, AES-CBC encryption and envelope serdes.

On-disk envelope (ASCII):
    <hex ciphertext><32 hex chars IV>\\n

Security Note:
    Keys are a truncated SHA-256 of the password: no salt, no iterations.
    This is kept for compatibility with existing files, not recommended.
    The envelope is not authenticated. Never log plaintext, keys or IVs.
"""
import os
import binascii
import logging
from dataclasses import dataclass
from typing import Union

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..exceptions import CryptoError, ParseError

logger = logging.getLogger("panther.vault")

KEY_LENGTH = 16  # AES-128
IV_SIZE = 16
IV_HEX_LENGTH = IV_SIZE * 2
BLOCK_SIZE_BITS = algorithms.AES.block_size


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def sha256(data: bytes) -> bytes:
    """Return the SHA-256 digest of ``data``."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize()


def derive_key(password: str) -> bytes:
    """Turn a password into a 16-byte AES key.

    The key is the first 16 bytes of SHA-256(password). Deterministic, and an
    empty password is accepted.
    """
    return sha256(password.encode("utf-8"))[:KEY_LENGTH]


def random_iv() -> bytes:
    """Return a fresh random IV."""
    return os.urandom(IV_SIZE)


# ---------------------------------------------------------------------------
# Cipher primitives
# ---------------------------------------------------------------------------

def encrypt(key: bytes, iv: bytes, plaintext: bytes) -> bytes:
    """Encrypt with AES-CBC and PKCS#7 padding.

    Raises:
        CryptoError: If the key or IV is unusable.
    """
    try:
        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        return encryptor.update(padded) + encryptor.finalize()
    except (ValueError, TypeError) as err:
        raise CryptoError(
            "failed to encrypt with given key and initialization vector"
        ) from err


def decrypt(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
    """Decrypt AES-CBC ciphertext and strip PKCS#7 padding.

    A bad key and a corrupted ciphertext raise the same error.

    Raises:
        CryptoError: If decryption or unpadding fails.
    """
    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except (ValueError, TypeError) as err:
        raise CryptoError(
            "failed to decrypt with given key and initialization vector"
        ) from err


# ---------------------------------------------------------------------------
# Envelope serialization
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EncryptedEnvelope:
    """Hex ciphertext plus hex IV, as stored on disk."""

    cipher_hex: str
    iv_hex: str

    def serialize(self) -> str:
        return f"{self.cipher_hex}{self.iv_hex}\n"

    def to_bytes(self) -> bytes:
        return self.serialize().encode("ascii")

    @classmethod
    def parse(cls, raw: Union[str, bytes]) -> "EncryptedEnvelope":
        """Split raw file contents into ciphertext and IV.

        Trailing whitespace is trimmed and the last 32 characters are taken
        as the IV.

        Raises:
            ParseError: If the contents are too short or not ASCII.
        """
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("ascii")
            except UnicodeDecodeError as err:
                raise ParseError("file is not a hex encoded envelope") from err
        contents = raw.rstrip()
        length = len(contents)
        if length < IV_HEX_LENGTH:
            raise ParseError(
                "file is too small to contain an initialization vector"
            )
        split = length - IV_HEX_LENGTH
        return cls(cipher_hex=contents[:split], iv_hex=contents[split:])

    def ciphertext(self) -> bytes:
        return hex_decode(self.cipher_hex)

    def iv(self) -> bytes:
        return hex_decode(self.iv_hex)


def hex_encode(data: bytes) -> str:
    return data.hex()


def hex_decode(text: str) -> bytes:
    """Decode a hex string; whitespace is not accepted.

    Raises:
        ParseError: If ``text`` is not valid hex.
    """
    try:
        return binascii.unhexlify(text)
    except (binascii.Error, ValueError) as err:
        raise ParseError("file contains invalid hex data") from err


def encode(key: bytes, plaintext: bytes) -> EncryptedEnvelope:
    """Encrypt ``plaintext`` under ``key`` with a fresh IV."""
    iv = random_iv()
    ciphertext = encrypt(key, iv, plaintext)
    return EncryptedEnvelope(
        cipher_hex=hex_encode(ciphertext),
        iv_hex=hex_encode(iv),
    )


def decode(key: bytes, raw: Union[str, bytes]) -> bytes:
    """Parse an envelope and decrypt it.

    An envelope holding only an IV represents empty content.

    Raises:
        ParseError: If the envelope is malformed.
        CryptoError: If decryption fails (wrong key or corrupt data).
    """
    envelope = EncryptedEnvelope.parse(raw)
    iv = envelope.iv()
    ciphertext = envelope.ciphertext()
    if not ciphertext:
        return b""
    return decrypt(key, iv, ciphertext)


def rekey(old_key: bytes, new_key: bytes, raw: Union[str, bytes]) -> EncryptedEnvelope:
    """Decrypt under ``old_key`` and encrypt again under ``new_key``.

    A new random IV is always generated.
    """
    return encode(new_key, decode(old_key, raw))
