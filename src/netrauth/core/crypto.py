"""
netrauth Cryptographic Primitives

Thin wrappers around established libraries for the primitives MS-NRPC
needs. The derivation code treats every function here as a black box.

Security:
- Uses constant-time comparisons for credentials
- Intermediate buffers holding key material are wiped by the callers
- No custom cipher or hash implementations
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from Cryptodome.Hash import MD4

try:
    # cryptography >= 43 moved the legacy ciphers
    from cryptography.hazmat.decrepit.ciphers import algorithms as decrepit_algorithms
except ImportError:
    decrepit_algorithms = algorithms

from netrauth.core.exceptions import CryptoError, DerivationError
from netrauth.core.types import (
    DES_KEY_SIZE,
    PasswordHash,
    PasswordKind,
    TrustPassword,
)


# TripleDES with K1 = K2 = K3 behaves exactly like DES.
DES = decrepit_algorithms.TripleDES

DES_BLOCK_SIZE = 8


# =============================================================================
# HASH FUNCTIONS
# =============================================================================


def md4_hash(data: bytes) -> bytes:
    """
    Compute MD4 hash (NT password hash).

    hashlib's MD4 is unavailable on most OpenSSL 3 builds, so pycryptodomex
    supplies it.
    """
    try:
        return MD4.new(data).digest()
    except (TypeError, ValueError) as e:
        raise CryptoError(f"MD4 failed: {e}") from e


def md5_hash(data: bytes) -> bytes:
    """
    Compute MD5 hash.

    Args:
        data: Data to hash

    Returns:
        16-byte MD5 digest
    """
    return hashlib.md5(data).digest()  # noqa: S324


def hmac_md5(key: bytes, data: bytes) -> bytes:
    """
    Compute HMAC-MD5.

    Args:
        key: HMAC key
        data: Data to authenticate

    Returns:
        16-byte HMAC-MD5 tag
    """
    return hmac.new(key, data, hashlib.md5).digest()


def compute_password_hash(password: TrustPassword) -> PasswordHash:
    """
    NT hash of the trust password.

    NT Hash = MD4(UTF-16LE(password)). A password that is already held as an
    OWF blob is copied unchanged.

    Raises:
        DerivationError: password is empty or wiped
    """
    if password.wiped or password.is_empty:
        raise DerivationError("trust password unavailable")

    if password.kind is PasswordKind.OWF:
        return PasswordHash(bytes(password))

    return PasswordHash(md4_hash(bytes(password)))


# =============================================================================
# BLOCK CIPHER
# =============================================================================


def expand_des_key(key: bytes) -> bytes:
    """
    Spread a 7-byte (56-bit) key over the 8 bytes DES expects.

    Each output byte carries 7 key bits in its high bits; the low (parity)
    bit is left clear since DES ignores it.
    """
    if len(key) != DES_KEY_SIZE:
        raise CryptoError(f"DES key must be {DES_KEY_SIZE} bytes, got {len(key)}")

    bits = int.from_bytes(key, "big")
    out = bytearray(8)
    for i in range(8):
        out[i] = ((bits >> (49 - 7 * i)) & 0x7F) << 1
    return bytes(out)


def des_encrypt_block(key: bytes, block: bytes) -> bytes:
    """
    Encrypt one 8-byte block with DES-ECB under a 7-byte key.

    Args:
        key: 7-byte key
        block: 8-byte plaintext

    Returns:
        8-byte ciphertext

    Raises:
        CryptoError: If the key or block is malformed or the cipher fails
    """
    if len(block) != DES_BLOCK_SIZE:
        raise CryptoError(f"DES block must be {DES_BLOCK_SIZE} bytes, got {len(block)}")

    try:
        cipher = Cipher(DES(expand_des_key(key) * 3), modes.ECB(), backend=default_backend())
        encryptor = cipher.encryptor()
        return encryptor.update(block) + encryptor.finalize()
    except CryptoError:
        raise
    except Exception as e:
        raise CryptoError(f"DES encryption failed: {e}") from e


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """
    Compare two byte strings in constant time.

    Args:
        a: First byte string
        b: Second byte string

    Returns:
        True if equal, False otherwise
    """
    return hmac.compare_digest(a, b)


def secure_random_bytes(length: int) -> bytes:
    """
    Generate cryptographically secure random bytes.

    Args:
        length: Number of bytes to generate

    Returns:
        Random bytes
    """
    return secrets.token_bytes(length)
