"""AES-256-GCM encryption utilities for the file-backed secret store.

This module provides cryptographic functions for encrypting and decrypting
the credentials document written when no OS keyring is available. GCM mode
provides both confidentiality and integrity protection.

Security considerations:
- Keys must be 256 bits (32 bytes) for AES-256
- IVs are 96 bits (12 bytes) and must be unique per encryption
- Never reuse an IV with the same key
- Generated key files are written with owner-only permissions (0600)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from nylas_cli.utils.errors import SecretStoreError, ValidationError

logger = logging.getLogger(__name__)

# Constants
KEY_SIZE_BITS = 256
KEY_SIZE_BYTES = KEY_SIZE_BITS // 8  # 32 bytes
IV_SIZE_BYTES = 12  # 96 bits, recommended for GCM
HEX_KEY_LENGTH = KEY_SIZE_BYTES * 2  # 64 hex characters


def generate_key() -> bytes:
    """Generate a cryptographically secure 256-bit encryption key.

    Returns:
        A 32-byte (256-bit) key suitable for AES-256-GCM encryption.
    """
    return AESGCM.generate_key(bit_length=KEY_SIZE_BITS)


def encrypt_data(plaintext: bytes, key: bytes) -> dict[str, bytes]:
    """Encrypt data using AES-256-GCM authenticated encryption.

    Generates a unique 12-byte IV for each encryption operation. The IV must
    be stored alongside the ciphertext for decryption.

    Args:
        plaintext: The data to encrypt.
        key: A 32-byte (256-bit) encryption key.

    Returns:
        A dictionary containing:
            - "iv": The 12-byte initialization vector (nonce)
            - "ciphertext": The encrypted data with authentication tag

    Raises:
        ValidationError: If the key is not exactly 32 bytes.
        SecretStoreError: If encryption fails for any reason.
    """
    _validate_key(key)

    try:
        iv = os.urandom(IV_SIZE_BYTES)
        aesgcm = AESGCM(key)
        ciphertext = aesgcm.encrypt(iv, plaintext, None)
        return {"iv": iv, "ciphertext": ciphertext}
    except Exception as e:
        raise SecretStoreError(
            "Failed to encrypt data",
            details={"error_type": type(e).__name__, "error_message": str(e)},
        ) from e


def decrypt_data(iv: bytes, ciphertext: bytes, key: bytes) -> bytes:
    """Decrypt data using AES-256-GCM authenticated decryption.

    Decrypts and verifies the authentication tag in a single operation.
    If the ciphertext has been tampered with, decryption will fail.

    Args:
        iv: The 12-byte initialization vector used during encryption.
        ciphertext: The encrypted data with authentication tag.
        key: The 32-byte (256-bit) encryption key used for encryption.

    Returns:
        The decrypted plaintext data.

    Raises:
        ValidationError: If the key or IV has invalid length.
        SecretStoreError: If decryption fails (invalid key, corrupted data,
            or tampered ciphertext).
    """
    _validate_key(key)
    _validate_iv(iv)

    try:
        aesgcm = AESGCM(key)
        return aesgcm.decrypt(iv, ciphertext, None)
    except Exception as e:
        raise SecretStoreError(
            "Failed to decrypt data - invalid key or corrupted ciphertext",
            details={"error_type": type(e).__name__},
        ) from e


def key_from_hex(hex_key: str) -> bytes:
    """Convert a hexadecimal string to an encryption key.

    Args:
        hex_key: A 64-character hexadecimal string representing a 256-bit key.

    Returns:
        A 32-byte encryption key.

    Raises:
        ValidationError: If the hex string is not exactly 64 characters or
            contains invalid hex characters.
    """
    hex_key = hex_key.strip()

    if len(hex_key) != HEX_KEY_LENGTH:
        raise ValidationError(
            f"Invalid hex key length: expected {HEX_KEY_LENGTH} characters, "
            f"got {len(hex_key)}",
            field="hex_key",
            details={"expected_length": HEX_KEY_LENGTH, "actual_length": len(hex_key)},
        )

    try:
        return bytes.fromhex(hex_key)
    except ValueError as e:
        raise ValidationError(
            "Invalid hex key: contains non-hexadecimal characters",
            field="hex_key",
            details={"error_message": str(e)},
        ) from e


def load_or_create_key(path: Path) -> bytes:
    """Load the hex key stored at ``path``, generating it on first use.

    Args:
        path: Location of the key file.

    Returns:
        A 32-byte encryption key.

    Raises:
        SecretStoreError: If the key file cannot be read or written.
        ValidationError: If the key file holds a malformed key.
    """
    try:
        if path.exists():
            return key_from_hex(path.read_text())

        key = generate_key()
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(key.hex())
        logger.info("Generated new file store key at %s", path)
        return key
    except OSError as e:
        raise SecretStoreError(
            f"Cannot access encryption key file: {e}",
            details={"path": str(path), "error_type": type(e).__name__},
        ) from e


def _validate_key(key: bytes) -> None:
    """Validate that the key is the correct length for AES-256."""
    if len(key) != KEY_SIZE_BYTES:
        raise ValidationError(
            f"Invalid key length: expected {KEY_SIZE_BYTES} bytes, got {len(key)}",
            field="key",
            details={"expected_length": KEY_SIZE_BYTES, "actual_length": len(key)},
        )


def _validate_iv(iv: bytes) -> None:
    """Validate that the IV is the correct length for GCM."""
    if len(iv) != IV_SIZE_BYTES:
        raise ValidationError(
            f"Invalid IV length: expected {IV_SIZE_BYTES} bytes, got {len(iv)}",
            field="iv",
            details={"expected_length": IV_SIZE_BYTES, "actual_length": len(iv)},
        )


__all__ = [
    "generate_key",
    "encrypt_data",
    "decrypt_data",
    "key_from_hex",
    "load_or_create_key",
]
