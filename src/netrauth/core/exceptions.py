"""
netrauth Exception Types

Exceptions raised inside the secure-channel code. NetlogonClient maps them
to a NetlogonStatus in establish_secure_channel and rotate_trust_password;
only InvariantViolation propagates from those.
"""

from typing import Optional


class NetrAuthError(Exception):
    """Base exception for all netrauth errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class TransportError(NetrAuthError):
    """
    RPC transport failure.

    Bind, call, or connection failure reported by the transport collaborator.
    Carries the NT status the transport reported, if any. Never retried by
    this package.
    """

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message, code)


class ProtocolStatusError(NetrAuthError):
    """
    The server answered a call with a non-zero NT status.

    Terminal for the current authentication attempt.
    """

    def __init__(self, opnum: int, code: int, message: Optional[str] = None) -> None:
        if message is None:
            message = f"opnum {opnum} returned status 0x{code:08X}"
        super().__init__(message, code)
        self.opnum = opnum


class DerivationError(NetrAuthError):
    """
    Local key or credential derivation failed.

    Missing or empty trust password, or a primitive crypto failure.
    """

    pass


class CryptoError(DerivationError):
    """A primitive hash or cipher operation failed."""

    pass


class CredentialMismatch(NetrAuthError):
    """
    The server's credential did not match the locally computed value.

    Treated as a potential security event, never as a transient fault.
    """

    pass


class MitigationExhausted(DerivationError):
    """
    No challenge or authenticator passing the uniqueness check was produced
    within the attempt bound.
    """

    pass


class StateError(NetrAuthError):
    """An operation was attempted in a channel state that does not allow it."""

    pass


class InvariantViolation(NetrAuthError):
    """
    A session-state invariant failed during a transition.

    Raised by the state machine before the transition is committed.
    """

    pass
