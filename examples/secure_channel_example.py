#!/usr/bin/env python3
"""
Netlogon Secure Channel Example

Demonstrates netrauth's NetlogonClient against the in-process simulated
domain controller:

1. Secure channel establishment (ServerReqChallenge, ServerAuthenticate2)
2. Secure session binding with a Netlogon security context
3. Trust password rotation under the credential chain
4. Failure handling with a wrong trust password
5. State machine trace export
"""

from netrauth import (
    InMemoryTrustPasswordStore,
    MachineIdentity,
    NetlogonConfig,
    create_netlogon_client,
)
from netrauth.core.logging import configure_logging
from netrauth.transport import SimulatedDomainController


def main():
    """Run a secure channel against the simulated DC."""
    configure_logging()

    print("=" * 70)
    print("netrauth - Netlogon Secure Channel")
    print("=" * 70)
    print()

    SERVER = "dc01.example.com"
    DOMAIN = "EXAMPLE"
    MACHINE_PASSWORD = "Machine-Password-1"

    dc = SimulatedDomainController()
    dc.add_account("WS01", MACHINE_PASSWORD)
    identity = MachineIdentity("ws01", "example", "example.com")

    # ==========================================================================
    # EXAMPLE 1: Establish the secure channel
    # ==========================================================================
    print("1. Establish Secure Channel")
    print("-" * 40)

    store = InMemoryTrustPasswordStore.from_plaintext(MACHINE_PASSWORD)
    client = create_netlogon_client(identity, store, transport=dc)
    status = client.establish_secure_channel(SERVER, DOMAIN)

    print(f"   Status:           {status.name}")
    print(f"   State:            {client.state.name}")
    print(f"   Negotiated flags: {client.negotiated_flags:#010x}")
    print(f"   Key strength:     {client.context.key_strength.name}")
    print()

    # ==========================================================================
    # EXAMPLE 2: Secure session and password rotation
    # ==========================================================================
    print("2. Rotate Trust Password")
    print("-" * 40)

    handle = client.open_secure_session(SERVER, DOMAIN)
    try:
        print(f"   Secure bind:      {handle.secure} (auth context {handle.auth_context_id})")
        status = client.rotate_trust_password(handle)
        print(f"   Rotation:         {status.name}")
        print(f"   Stored secret:    {store.kind.name}")
        print(f"   Chain timestamp:  {client.context.timestamp}")
    finally:
        client.close_session(handle)

    status = client.establish_secure_channel(SERVER, DOMAIN)
    print(f"   Re-establish:     {status.name}")
    print()

    # ==========================================================================
    # EXAMPLE 3: Secure RPC disabled by configuration
    # ==========================================================================
    print("3. Secure RPC Disabled")
    print("-" * 40)

    plain_client = create_netlogon_client(
        identity,
        store,
        transport=dc,
        config=NetlogonConfig(disable_secure_rpc=True),
    )
    plain_client.establish_secure_channel(SERVER, DOMAIN)
    handle = plain_client.open_secure_session(SERVER, DOMAIN)
    print(f"   Negotiated flags: {plain_client.negotiated_flags:#010x}")
    print(f"   Secure bind:      {handle.secure}")
    plain_client.close_session(handle)
    print()

    # ==========================================================================
    # EXAMPLE 4: Wrong trust password
    # ==========================================================================
    print("4. Wrong Trust Password")
    print("-" * 40)

    stale = create_netlogon_client(
        identity, InMemoryTrustPasswordStore.from_plaintext("stale"), transport=dc
    )
    status = stale.establish_secure_channel(SERVER, DOMAIN)
    print(f"   Status:           {status.name}")
    print(f"   State:            {stale.state.name}")
    print(f"   Failed stage:     {stale.context.failed_stage}")
    print()

    # ==========================================================================
    # EXAMPLE 5: Trace export
    # ==========================================================================
    print("5. State Machine Trace")
    print("-" * 40)
    print(client.export_trace_json())


if __name__ == "__main__":
    main()
