"""
netrauth NETLOGON Types

Session state, state-machine events, and the request/response shapes of the
three NETLOGON calls this client makes (MS-NRPC 3.1.4).
"""

from __future__ import annotations

from enum import Enum, IntEnum, auto
from typing import Optional

import attrs
from attrs import field

from netrauth.core.types import (
    KeyStrength,
    NetlogonAuthenticator,
    NetrCredential,
    NtStatus,
    SessionKey,
)


# =============================================================================
# PROTOCOL CONSTANTS
# =============================================================================


class NetrOpnum(IntEnum):
    """NETLOGON RPC operation numbers used by this client."""

    SERVER_REQ_CHALLENGE = 4
    SERVER_PASSWORD_SET = 6
    SERVER_AUTHENTICATE2 = 15


class SecureChannelType(IntEnum):
    """NETLOGON_SECURE_CHANNEL_TYPE values."""

    WORKSTATION = 2
    TRUSTED_DOMAIN = 4
    SERVER = 6


# =============================================================================
# CHANNEL STATE MACHINE
# =============================================================================


class ChannelState(Enum):
    """Secure-channel establishment states."""

    UNINITIALIZED = auto()
    CHALLENGING = auto()
    AUTHENTICATING = auto()
    ESTABLISHED = auto()
    FAILED = auto()


@attrs.define
class SessionState:
    """
    Context of one secure-channel attempt.

    Only the channel state machine replaces it; every update goes through a
    transition so invariants are checked first.
    """

    # Identity
    hostname: str = ""
    netbios_domain: str = ""
    fqdn_domain: str = ""
    server_name: str = ""

    # Challenge exchange
    client_challenge: Optional[NetrCredential] = None
    server_challenge: Optional[NetrCredential] = None

    # Key and credential chain
    session_key: Optional[SessionKey] = None
    key_strength: Optional[KeyStrength] = None
    key_generation: int = 0
    client_credential: Optional[NetrCredential] = None
    server_credential: Optional[NetrCredential] = None
    credential_generation: int = 0
    timestamp: int = 0

    # Negotiation
    proposed_flags: int = 0
    negotiated_flags: int = 0

    established: bool = False
    sequence_number: int = 0

    # Failure bookkeeping
    failed_stage: str = ""
    error_message: str = ""

    @property
    def account_name(self) -> str:
        """Trust account name, the NetBIOS hostname followed by '$'."""
        return f"{self.hostname}$"


@attrs.define(frozen=True, slots=True)
class ChallengeExchanged:
    """Event: client challenge sent, server challenge received."""

    hostname: str
    netbios_domain: str
    fqdn_domain: str
    server_name: str
    client_challenge: NetrCredential
    server_challenge: NetrCredential


@attrs.define(frozen=True, slots=True)
class AuthenticateSent:
    """Event: session key derived and ServerAuthenticate2 issued."""

    session_key: SessionKey
    client_credential: NetrCredential
    server_credential: NetrCredential
    proposed_flags: int
    credential_generation: int  # key generation the credentials were computed under


@attrs.define(frozen=True, slots=True)
class ServerCredentialVerified:
    """Event: returned server credential matched the expected value."""

    negotiated_flags: int
    sequence_number: int


@attrs.define(frozen=True, slots=True)
class ChainAdvanced:
    """Event: a return authenticator validated; the seed moves forward."""

    client_credential: NetrCredential
    server_credential: NetrCredential
    timestamp: int
    credential_generation: int


@attrs.define(frozen=True, slots=True)
class ChannelFailed:
    """Event: the attempt failed at ``stage``."""

    stage: str
    reason: str


# =============================================================================
# RPC REQUESTS AND RESPONSES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class ServerReqChallengeRequest:
    """NetrServerReqChallenge input."""

    server_name: str
    computer_name: str
    client_challenge: NetrCredential


@attrs.define(frozen=True, slots=True)
class ServerReqChallengeResponse:
    """NetrServerReqChallenge output."""

    status: int = NtStatus.SUCCESS
    server_challenge: Optional[NetrCredential] = None


@attrs.define(frozen=True, slots=True)
class ServerAuthenticate2Request:
    """NetrServerAuthenticate2 input."""

    server_name: str
    account_name: str
    secure_channel_type: SecureChannelType
    computer_name: str
    client_credential: NetrCredential
    negotiate_flags: int


@attrs.define(frozen=True, slots=True)
class ServerAuthenticate2Response:
    """NetrServerAuthenticate2 output. ``negotiate_flags`` is the server's reply."""

    status: int = NtStatus.SUCCESS
    server_credential: Optional[NetrCredential] = None
    negotiate_flags: int = 0


@attrs.define(frozen=True, slots=True)
class ServerPasswordSetRequest:
    """NetrServerPasswordSet input. ``new_password`` is the 16-byte derived blob."""

    server_name: str
    account_name: str
    secure_channel_type: SecureChannelType
    computer_name: str
    authenticator: NetlogonAuthenticator
    new_password: bytes = field(repr=False)


@attrs.define(frozen=True, slots=True)
class ServerPasswordSetResponse:
    """NetrServerPasswordSet output."""

    status: int = NtStatus.SUCCESS
    return_authenticator: NetlogonAuthenticator = field(factory=NetlogonAuthenticator.empty)
