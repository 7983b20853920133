"""
Unit tests for netrauth.core.crypto module.

Known-answer tests for the primitives the Netlogon derivations rely on.
"""

import hashlib
import hmac
import warnings

import pytest
from cryptography.utils import CryptographyDeprecationWarning

from netrauth.core.crypto import (
    compute_password_hash,
    constant_time_compare,
    des_encrypt_block,
    expand_des_key,
    hmac_md5,
    md4_hash,
    md5_hash,
    secure_random_bytes,
)
from netrauth.core.exceptions import CryptoError, DerivationError
from netrauth.core.types import PasswordKind, TrustPassword

from tests.conftest import (
    KEY_0123456789ABCDEF,
    KEY_133457799BBCDFF1,
    KEY_8001010101010101,
    ZERO_KEY_OF_ZERO_BLOCK,
)


class TestHashes:
    """Tests for hash and MAC wrappers."""

    def test_md4_empty(self):
        assert md4_hash(b"").hex() == "31d6cfe0d16ae931b73c59d7e0c089c0"

    def test_md4_rfc1320_vector(self):
        assert md4_hash(b"abc").hex() == "a448017aaf21d8525fc10ae87aa6729d"

    def test_md5_matches_hashlib(self):
        assert md5_hash(b"netlogon") == hashlib.md5(b"netlogon").digest()

    def test_hmac_md5_rfc2104_vector(self):
        tag = hmac_md5(b"Jefe", b"what do ya want for nothing?")
        assert tag.hex() == "750c783e6ab0b503eaa86e310a5db738"

    def test_hmac_md5_matches_stdlib(self):
        key, msg = b"k" * 16, b"m" * 16
        assert hmac_md5(key, msg) == hmac.new(key, msg, hashlib.md5).digest()


class TestPasswordHash:
    """Tests for the NT password hash."""

    def test_nt_hash_of_password(self):
        password = TrustPassword.from_plaintext("Password")
        nt_hash = compute_password_hash(password)
        assert bytes(nt_hash).hex() == "a4f49c406510bdcab6824ee7c30fd852"

    def test_owf_password_used_as_is(self):
        owf = bytes(range(16))
        nt_hash = compute_password_hash(TrustPassword.from_owf(owf))
        assert bytes(nt_hash) == owf

    def test_empty_password_rejected(self):
        with pytest.raises(DerivationError):
            compute_password_hash(TrustPassword.from_plaintext(""))

    def test_wiped_password_rejected(self):
        password = TrustPassword.from_plaintext("Password")
        password.wipe()
        with pytest.raises(DerivationError):
            compute_password_hash(password)

    def test_plaintext_is_utf16le(self):
        password = TrustPassword.from_plaintext("ab")
        assert password.kind is PasswordKind.PLAINTEXT
        assert bytes(password) == b"a\x00b\x00"


class TestDesKeyExpansion:
    """Tests for 56-bit to 64-bit DES key expansion."""

    def test_expansion_matches_classic_key(self):
        assert expand_des_key(KEY_0123456789ABCDEF).hex() == "0022446688aaccee"

    def test_expansion_of_high_bit(self):
        assert expand_des_key(KEY_8001010101010101).hex() == "8000000000000000"

    def test_parity_bits_clear(self):
        expanded = expand_des_key(b"\xff" * 7)
        assert expanded == b"\xfe" * 8

    @pytest.mark.parametrize("length", [0, 6, 8, 16])
    def test_wrong_length_rejected(self, length: int):
        with pytest.raises(CryptoError):
            expand_des_key(b"\x01" * length)


class TestDesEncrypt:
    """Known-answer tests for single-block DES."""

    def test_fips81_example(self):
        block = bytes.fromhex("4e6f772069732074")  # "Now is t"
        assert des_encrypt_block(KEY_0123456789ABCDEF, block).hex() == "3fa40e8a984d4815"

    def test_textbook_example(self):
        block = bytes.fromhex("0123456789abcdef")
        assert des_encrypt_block(KEY_133457799BBCDFF1, block).hex() == "85e813540f0ab405"

    def test_variable_key_vector(self):
        assert des_encrypt_block(KEY_8001010101010101, bytes(8)).hex() == "95a8d72813daa94d"

    def test_zero_key_zero_block(self):
        assert des_encrypt_block(bytes(7), bytes(8)) == ZERO_KEY_OF_ZERO_BLOCK

    def test_weak_key_is_involution(self):
        block = bytes.fromhex("8000000000000000")
        once = des_encrypt_block(bytes(7), block)
        assert once.hex() == "95f8a5e5dd31d900"
        assert des_encrypt_block(bytes(7), once) == block

    def test_no_deprecated_cipher_usage(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error", CryptographyDeprecationWarning)
            result = des_encrypt_block(KEY_0123456789ABCDEF, bytes.fromhex("4e6f772069732074"))
        assert result.hex() == "3fa40e8a984d4815"

    def test_wrong_block_length_rejected(self):
        with pytest.raises(CryptoError):
            des_encrypt_block(bytes(7), bytes(7))

    def test_wrong_key_length_rejected(self):
        with pytest.raises(CryptoError):
            des_encrypt_block(bytes(8), bytes(8))


class TestUtilities:
    """Tests for comparison and random helpers."""

    def test_constant_time_compare(self):
        assert constant_time_compare(b"abc", b"abc")
        assert not constant_time_compare(b"abc", b"abd")
        assert not constant_time_compare(b"abc", b"ab")

    def test_secure_random_bytes_length(self):
        assert len(secure_random_bytes(8)) == 8
        assert secure_random_bytes(16) != secure_random_bytes(16)
