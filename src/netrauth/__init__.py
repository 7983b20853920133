"""
netrauth - NETLOGON Secure-Channel Client

Establishes and maintains a Netlogon secure channel between a domain member
and a domain controller (MS-NRPC), and rotates the machine trust password
under the channel's credential chain.

Example Usage:
    from netrauth import (
        InMemoryTrustPasswordStore,
        MachineIdentity,
        create_netlogon_client,
    )

    client = create_netlogon_client(
        MachineIdentity("WS01", "EXAMPLE", "example.com"),
        InMemoryTrustPasswordStore.from_plaintext(machine_password),
        transport,
    )
    status = client.establish_secure_channel("dc01.example.com", "EXAMPLE")
    if status.ok:
        trace = client.export_trace_json()
"""

from netrauth.core.types import KeyStrength, NegotiateFlags, NetlogonStatus, NtStatus
from netrauth.config import (
    InMemoryTrustPasswordStore,
    MachineIdentity,
    NetlogonConfig,
    TrustPasswordStore,
)
from netrauth.netlogon.client import NetlogonClient, create_netlogon_client

__version__ = "0.1.0"

__all__ = [
    # Main API
    "NetlogonClient",
    "create_netlogon_client",
    # Configuration
    "NetlogonConfig",
    "MachineIdentity",
    "TrustPasswordStore",
    "InMemoryTrustPasswordStore",
    # Types
    "KeyStrength",
    "NegotiateFlags",
    "NetlogonStatus",
    "NtStatus",
    # Metadata
    "__version__",
]
