"""
netrauth Core Module

Foundational types and abstractions used by the secure-channel client.

Components:
- types: Status codes, negotiate flags, credentials, secret buffers
- state_machine: Base state machine with invariant checking
- crypto: Cryptographic operations wrapper
- exceptions: Custom exception types
- logging: structlog configuration and secret scrubbing
"""

from netrauth.core.types import (
    KeyStrength,
    NegotiateFlags,
    NetlogonAuthenticator,
    NetlogonStatus,
    NetrCredential,
    NtStatus,
    OwfPassword,
    PasswordHash,
    SecretBytes,
    SessionKey,
    TrustPassword,
)
from netrauth.core.state_machine import StateMachineBase, Transition
from netrauth.core.exceptions import (
    CredentialMismatch,
    CryptoError,
    DerivationError,
    InvariantViolation,
    MitigationExhausted,
    NetrAuthError,
    ProtocolStatusError,
    StateError,
    TransportError,
)
from netrauth.core.logging import configure_logging

__all__ = [
    # Types
    "KeyStrength",
    "NegotiateFlags",
    "NetlogonAuthenticator",
    "NetlogonStatus",
    "NetrCredential",
    "NtStatus",
    "OwfPassword",
    "PasswordHash",
    "SecretBytes",
    "SessionKey",
    "TrustPassword",
    # State Machine
    "StateMachineBase",
    "Transition",
    # Exceptions
    "NetrAuthError",
    "TransportError",
    "ProtocolStatusError",
    "DerivationError",
    "CryptoError",
    "CredentialMismatch",
    "MitigationExhausted",
    "StateError",
    "InvariantViolation",
    # Logging
    "configure_logging",
]
