"""
Property-based tests for Netlogon cryptographic primitives.

Uses Hypothesis to test invariants across many random inputs.
"""

import hashlib
import hmac
from collections import Counter

from hypothesis import given, settings, strategies as st

from netrauth.core.crypto import des_encrypt_block, expand_des_key, hmac_md5
from netrauth.core.types import KeyStrength, NetrCredential, PasswordHash
from netrauth.netlogon.challenge import generate_client_challenge, passes_dc_mitigation
from netrauth.netlogon.credentials import (
    CredentialFault,
    compute_credential,
    derive_new_password,
)
from netrauth.netlogon.session_key import (
    compute_challenge_sum,
    legacy_session_key_from_hash,
    strong_session_key_from_hash,
)

from tests.conftest import make_session_key


# =============================================================================
# STRATEGIES
# =============================================================================

block_strategy = st.binary(min_size=8, max_size=8)
des_key_strategy = st.binary(min_size=7, max_size=7)
hash_strategy = st.binary(min_size=16, max_size=16)
word_strategy = st.integers(min_value=0, max_value=0xFFFFFFFF)
credential_strategy = block_strategy.map(NetrCredential)


# =============================================================================
# CHALLENGE PROPERTIES
# =============================================================================


class TestMitigationProperties:
    """Property-based tests for the DC mitigation check."""

    @given(block_strategy)
    def test_matches_counting_definition(self, data: bytes):
        """Property: passes iff some prefix byte occurs exactly once."""
        counts = Counter(data[:5])
        assert passes_dc_mitigation(data) == (1 in counts.values())

    @given(block_strategy, st.binary(min_size=0, max_size=8))
    def test_suffix_irrelevant(self, data: bytes, suffix: bytes):
        """Property: bytes after the first five never change the verdict."""
        assert passes_dc_mitigation(data) == passes_dc_mitigation(data[:5] + suffix + bytes(8))

    @given(st.lists(block_strategy, min_size=1, max_size=20))
    @settings(max_examples=50)
    def test_generated_challenge_passes(self, draws):
        """Property: generation returns the first draw that passes."""
        pool = draws + [bytes.fromhex("0102030405060708")]
        candidates = iter(pool)
        result = generate_client_challenge(random_source=lambda n: next(candidates))
        expected = next(d for d in pool if passes_dc_mitigation(d))
        assert result.data == expected


# =============================================================================
# DES PROPERTIES
# =============================================================================


class TestDesProperties:
    """Property-based tests for the DES block primitive."""

    @given(des_key_strategy)
    def test_expansion_keeps_key_bits(self, key: bytes):
        """Property: dropping the parity bits of the expansion gives back the key."""
        expanded = expand_des_key(key)
        bits = "".join(format(b >> 1, "07b") for b in expanded)
        assert int(bits, 2).to_bytes(7, "big") == key

    @given(des_key_strategy, block_strategy, block_strategy)
    @settings(max_examples=50)
    def test_injective_per_key(self, key: bytes, a: bytes, b: bytes):
        """Property: DES under one key is a permutation of blocks."""
        if a != b:
            assert des_encrypt_block(key, a) != des_encrypt_block(key, b)

    @given(block_strategy)
    def test_weak_key_involution(self, block: bytes):
        """Property: the zero key expands to a weak key whose encryption is its own inverse."""
        zero = bytes(7)
        assert des_encrypt_block(zero, des_encrypt_block(zero, block)) == block


# =============================================================================
# KEY AND CREDENTIAL PROPERTIES
# =============================================================================


class TestSessionKeyProperties:
    """Property-based tests for session key derivation."""

    @given(credential_strategy, credential_strategy)
    def test_challenge_sum_commutative(self, a: NetrCredential, b: NetrCredential):
        assert compute_challenge_sum(a, b) == compute_challenge_sum(b, a)

    @given(hash_strategy, credential_strategy, credential_strategy)
    @settings(max_examples=50)
    def test_strong_key_matches_hmac(self, nt_hash: bytes, cc: NetrCredential, sc: NetrCredential):
        """Property: strong key equals HMAC-MD5(hash, MD5(zeros || cc || sc))."""
        key = strong_session_key_from_hash(PasswordHash(nt_hash), cc, sc).unwrap()
        digest = hashlib.md5(bytes(4) + cc.data + sc.data).digest()
        assert bytes(key) == hmac.new(nt_hash, digest, hashlib.md5).digest()

    @given(hash_strategy, credential_strategy, credential_strategy)
    @settings(max_examples=50)
    def test_legacy_key_padded(self, nt_hash: bytes, cc: NetrCredential, sc: NetrCredential):
        """Property: legacy keys carry 8 significant bytes and 8 zero bytes."""
        key = legacy_session_key_from_hash(PasswordHash(nt_hash), cc, sc).unwrap()
        assert key.strength is KeyStrength.LEGACY
        assert bytes(key)[8:] == bytes(8)

    @given(st.binary(min_size=0, max_size=64), st.binary(min_size=0, max_size=128))
    def test_hmac_md5_matches_stdlib(self, key: bytes, data: bytes):
        assert hmac_md5(key, data) == hmac.new(key, data, hashlib.md5).digest()


class TestCredentialProperties:
    """Property-based tests for credential computation."""

    @given(hash_strategy, credential_strategy, word_strategy)
    @settings(max_examples=50)
    def test_increment_equals_advanced_input(
        self, material: bytes, seed: NetrCredential, increment: int
    ):
        """Property: Cred(seed, n) == Cred(seed + n, 0)."""
        key = make_session_key(material)
        direct = compute_credential(key, seed, increment).unwrap()
        shifted = compute_credential(key, seed.advanced(increment)).unwrap()
        assert direct == shifted

    @given(hash_strategy, credential_strategy, word_strategy)
    @settings(max_examples=50)
    def test_retry_reported_only_for_failing_output(
        self, material: bytes, seed: NetrCredential, increment: int
    ):
        """Property: RETRY is returned exactly when the output fails the check."""
        key = make_session_key(material)
        plain = compute_credential(key, seed, increment).unwrap()
        checked = compute_credential(key, seed, increment, retry_allowed=True)
        if passes_dc_mitigation(plain.data):
            assert checked.unwrap() == plain
        else:
            assert checked.failure() is CredentialFault.RETRY

    @given(hash_strategy, hash_strategy)
    @settings(max_examples=50)
    def test_new_password_is_sixteen_bytes(self, material: bytes, old: bytes):
        key = make_session_key(material)
        assert len(derive_new_password(key, old).unwrap()) == 16

    @given(hash_strategy)
    def test_new_password_under_weak_key_is_involution(self, old: bytes):
        """Property: deriving twice under the zero session key gives back the old password."""
        key = make_session_key(bytes(16))
        once = derive_new_password(key, old).unwrap()
        assert bytes(derive_new_password(key, bytes(once)).unwrap()) == old
