"""
netrauth NETLOGON Module

Netlogon secure-channel establishment (MS-NRPC 3.1.4).

Components:
- types: Session state, state-machine events, RPC request/response shapes
- challenge: Client challenge generation with the DC uniqueness check
- session_key: Strong (HMAC-MD5) and legacy (DES) session-key derivation
- credentials: Credential computation, credential chain, password change
- client: Channel state machine and the high-level client

Both session-key variants and all credential computations rest on MD4,
MD5 and single DES. They are only as strong as the trust password.
"""

from netrauth.netlogon.types import (
    ChannelState,
    NetrOpnum,
    SecureChannelType,
    SessionState,
)
from netrauth.netlogon.challenge import generate_client_challenge, passes_dc_mitigation
from netrauth.netlogon.session_key import (
    derive_legacy_session_key,
    derive_session_key,
    derive_strong_session_key,
)
from netrauth.netlogon.credentials import (
    CredentialChain,
    CredentialFault,
    compute_credential,
    derive_new_password,
)
from netrauth.netlogon.client import (
    NetlogonChannelStateMachine,
    NetlogonClient,
    create_netlogon_client,
)

__all__ = [
    # State
    "ChannelState",
    "SessionState",
    # Constants
    "NetrOpnum",
    "SecureChannelType",
    # Derivation
    "generate_client_challenge",
    "passes_dc_mitigation",
    "derive_session_key",
    "derive_strong_session_key",
    "derive_legacy_session_key",
    "compute_credential",
    "derive_new_password",
    "CredentialChain",
    "CredentialFault",
    # Client
    "NetlogonChannelStateMachine",
    "NetlogonClient",
    "create_netlogon_client",
]
