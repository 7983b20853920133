"""
Session-key computation (MS-NRPC 3.1.4.3).

Two mutually exclusive algorithms, selected by KeyStrength:

STRONG (128-bit):
    SessionKey = HMAC-MD5(NTHash(password), MD5(0x00000000 || ClientChallenge || ServerChallenge))

LEGACY (64-bit):
    Sum        = ClientChallenge + ServerChallenge   (two LE 32-bit words, wrapping)
    Temp       = DES(NTHash[0:7], Sum)
    SessionKey = DES(NTHash[9:16], Temp)

The password, its hash, and intermediate results are wiped on every exit
path. Failures are returned as ``Failure(reason)``; reasons never contain
key material.
"""

from __future__ import annotations

import structlog
from returns.result import Failure, Result, Success

from netrauth.core.crypto import (
    compute_password_hash,
    des_encrypt_block,
    hmac_md5,
    md5_hash,
)
from netrauth.core.exceptions import DerivationError
from netrauth.core.types import (
    KeyStrength,
    NetrCredential,
    PasswordHash,
    SecretBytes,
    SessionKey,
    TrustPassword,
)

logger = structlog.get_logger()

SESSION_KEY_ZERO_PREFIX = bytes(4)


def compute_challenge_sum(
    client_challenge: NetrCredential, server_challenge: NetrCredential
) -> NetrCredential:
    """Word-wise little-endian sum of the two challenges, modulo 2**32 per word."""
    return client_challenge + server_challenge


def strong_session_key_from_hash(
    password_hash: PasswordHash,
    client_challenge: NetrCredential,
    server_challenge: NetrCredential,
    generation: int = 0,
) -> Result[SessionKey, str]:
    """128-bit session key from an NT hash. The hash is left intact for the caller."""
    try:
        digest = SecretBytes(
            md5_hash(SESSION_KEY_ZERO_PREFIX + client_challenge.data + server_challenge.data)
        )
        with digest:
            material = hmac_md5(bytes(password_hash), bytes(digest))
        return Success(SessionKey.create(material, KeyStrength.STRONG, generation))
    except Exception as e:
        logger.error("strong_session_key_failed", error_type=type(e).__name__)
        return Failure(f"strong session key derivation failed: {type(e).__name__}")


def legacy_session_key_from_hash(
    password_hash: PasswordHash,
    client_challenge: NetrCredential,
    server_challenge: NetrCredential,
    generation: int = 0,
) -> Result[SessionKey, str]:
    """64-bit session key from an NT hash. The hash is left intact for the caller."""
    challenge_sum = compute_challenge_sum(client_challenge, server_challenge)
    try:
        intermediate = SecretBytes(
            des_encrypt_block(password_hash.low_des_key, challenge_sum.data)
        )
        with intermediate:
            material = des_encrypt_block(password_hash.skewed_des_key, bytes(intermediate))
        return Success(SessionKey.create(material, KeyStrength.LEGACY, generation))
    except Exception as e:
        logger.error("legacy_session_key_failed", error_type=type(e).__name__)
        return Failure(f"legacy session key derivation failed: {type(e).__name__}")


def _derive(
    strength: KeyStrength,
    password: TrustPassword,
    client_challenge: NetrCredential,
    server_challenge: NetrCredential,
    generation: int,
) -> Result[SessionKey, str]:
    try:
        with password:
            if password.is_empty:
                logger.warning("trust_password_unavailable", strength=strength.name)
                return Failure("trust password unavailable")
            password_hash = compute_password_hash(password)
    except DerivationError as e:
        logger.warning("password_hash_failed", strength=strength.name, error=e.message)
        return Failure(e.message)

    with password_hash:
        if strength is KeyStrength.STRONG:
            return strong_session_key_from_hash(
                password_hash, client_challenge, server_challenge, generation
            )
        return legacy_session_key_from_hash(
            password_hash, client_challenge, server_challenge, generation
        )


def derive_strong_session_key(
    password: TrustPassword,
    client_challenge: NetrCredential,
    server_challenge: NetrCredential,
    generation: int = 0,
) -> Result[SessionKey, str]:
    """
    Derive the 128-bit session key.

    The password is wiped before returning, whatever the outcome.

    Returns:
        Success(SessionKey) with 16 significant bytes
        Failure(reason) if the password is empty or a primitive fails
    """
    return _derive(KeyStrength.STRONG, password, client_challenge, server_challenge, generation)


def derive_legacy_session_key(
    password: TrustPassword,
    client_challenge: NetrCredential,
    server_challenge: NetrCredential,
    generation: int = 0,
) -> Result[SessionKey, str]:
    """
    Derive the 64-bit session key.

    The password is wiped before returning, whatever the outcome.
    """
    return _derive(KeyStrength.LEGACY, password, client_challenge, server_challenge, generation)


def derive_session_key(
    strength: KeyStrength,
    password: TrustPassword,
    client_challenge: NetrCredential,
    server_challenge: NetrCredential,
    generation: int = 0,
) -> Result[SessionKey, str]:
    """Dispatch to the derivation selected by ``strength``."""
    return _derive(strength, password, client_challenge, server_challenge, generation)
