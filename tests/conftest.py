"""
Pytest configuration and shared fixtures for netrauth tests.
"""

import random
from typing import Callable

import pytest

from netrauth.config import InMemoryTrustPasswordStore, MachineIdentity, NetlogonConfig
from netrauth.core.types import KeyStrength, NetrCredential, SessionKey
from netrauth.netlogon.client import NetlogonClient
from netrauth.transport.simulated import SimulatedDomainController


# =============================================================================
# DES KNOWN-ANSWER MATERIAL
# =============================================================================

# 7-byte keys whose 8-byte expansions equal the classic DES test keys
# (parity bits ignored).
KEY_0123456789ABCDEF = bytes.fromhex("00451338957377")
KEY_133457799BBCDFF1 = bytes.fromhex("12695BC9B7B7F8")
KEY_8001010101010101 = bytes.fromhex("80000000000000")

# The all-zero 7-byte key expands to the weak key 0101010101010101, under
# which encryption is an involution.
ZERO_KEY_OF_ZERO_BLOCK = bytes.fromhex("8CA64DE9C1B123A7")

MACHINE_PASSWORD = "Machine-Password-1"
TIMESTAMP = 1_700_000_000


def challenge(hex_value: str) -> NetrCredential:
    return NetrCredential(bytes.fromhex(hex_value))


def make_session_key(material: bytes, strength: KeyStrength = KeyStrength.STRONG) -> SessionKey:
    return SessionKey.create(material, strength)


def seeded_random_source(seed: int = 1234) -> Callable[[int], bytes]:
    """Deterministic stand-in for the CSPRNG."""
    rng = random.Random(seed)
    return lambda n: bytes(rng.getrandbits(8) for _ in range(n))


# =============================================================================
# IDENTITY AND SECRET FIXTURES
# =============================================================================


@pytest.fixture
def identity() -> MachineIdentity:
    """Local machine identity."""
    return MachineIdentity("ws01", "example", "Example.COM")


@pytest.fixture
def password_store() -> InMemoryTrustPasswordStore:
    """Trust password store holding the machine password."""
    return InMemoryTrustPasswordStore.from_plaintext(MACHINE_PASSWORD)


# =============================================================================
# TRANSPORT AND CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def domain_controller() -> SimulatedDomainController:
    """Simulated DC that knows the WS01 trust account."""
    dc = SimulatedDomainController(random_source=seeded_random_source(99))
    dc.add_account("WS01", MACHINE_PASSWORD)
    return dc


@pytest.fixture
def netlogon_config() -> NetlogonConfig:
    return NetlogonConfig()


@pytest.fixture
def netlogon_client(
    identity: MachineIdentity,
    password_store: InMemoryTrustPasswordStore,
    domain_controller: SimulatedDomainController,
    netlogon_config: NetlogonConfig,
) -> NetlogonClient:
    """Client wired to the simulated DC with a fixed clock."""
    return NetlogonClient(
        identity=identity,
        password_store=password_store,
        transport=domain_controller,
        config=netlogon_config,
        timestamp_source=lambda: TIMESTAMP,
        random_source=seeded_random_source(7),
    )


@pytest.fixture
def established_client(netlogon_client: NetlogonClient) -> NetlogonClient:
    """Client with an established secure channel."""
    status = netlogon_client.establish_secure_channel("dc01.example.com", "EXAMPLE")
    assert status.ok
    return netlogon_client


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a live domain controller"
    )
