"""
Netlogon credential computation (MS-NRPC 3.1.4.4, 3.1.4.5).

Credential generation, the rolling credential chain used by authenticated
calls, and the derivation of a new trust password for NetrServerPasswordSet.

All three use DES twice, once under session_key[0:7] and once under
session_key[7:14]. For a legacy (8-byte) key the second slice reaches into
the zero padding; that is what a domain controller computes too.
"""

from __future__ import annotations

from enum import Enum, auto

import attrs
import structlog
from returns.result import Failure, Result, Success

from netrauth.core.crypto import constant_time_compare, des_encrypt_block
from netrauth.core.exceptions import CryptoError
from netrauth.core.types import (
    NetlogonAuthenticator,
    NetrCredential,
    OwfPassword,
    SecretBytes,
    SessionKey,
)
from netrauth.netlogon.challenge import MAX_CHALLENGE_ATTEMPTS, passes_dc_mitigation
from netrauth.netlogon.types import ChainAdvanced, SessionState

logger = structlog.get_logger()

MAX_AUTHENTICATOR_ATTEMPTS = MAX_CHALLENGE_ATTEMPTS


class CredentialFault(Enum):
    """Why compute_credential produced no credential."""

    RETRY = auto()  # output failed the DC mitigation check
    FAILURE = auto()  # primitive cipher failure


def compute_credential(
    session_key: SessionKey,
    challenge: NetrCredential,
    increment: int = 0,
    retry_allowed: bool = False,
) -> Result[NetrCredential, CredentialFault]:
    """
    Compute a Netlogon credential.

    The first little-endian word of ``challenge`` is incremented by
    ``increment`` (mod 2**32), then:

        tmp        = DES(session_key[0:7], input)
        credential = DES(session_key[7:14], tmp)

    With ``retry_allowed`` a result failing the DC mitigation check is
    reported as ``Failure(CredentialFault.RETRY)``; choosing a new increment
    is up to the caller.
    """
    data = challenge.advanced(increment)
    try:
        with SecretBytes(des_encrypt_block(session_key.low_des_key, data.data)) as tmp:
            output = des_encrypt_block(session_key.high_des_key, bytes(tmp))
    except (CryptoError, ValueError) as e:
        logger.error("credential_computation_failed", error_type=type(e).__name__)
        return Failure(CredentialFault.FAILURE)

    if retry_allowed and not passes_dc_mitigation(output):
        return Failure(CredentialFault.RETRY)

    return Success(NetrCredential(output))


def derive_new_password(
    session_key: SessionKey, old_password: bytes
) -> Result[OwfPassword, str]:
    """
    Derive the 16-byte password blob sent by NetrServerPasswordSet.

        new[0:8]  = DES(session_key[0:7],  old[0:8])
        new[8:16] = DES(session_key[7:14], old[8:16])

    Args:
        session_key: Established session key
        old_password: Current 16-byte OWF password

    Returns:
        Success(OwfPassword) or Failure(reason)
    """
    if len(old_password) != OwfPassword.SIZE:
        return Failure(
            f"old password must be {OwfPassword.SIZE} bytes, got {len(old_password)}"
        )

    with OwfPassword(old_password) as old:
        try:
            low = des_encrypt_block(session_key.low_des_key, old.low_half)
            high = des_encrypt_block(session_key.high_des_key, old.high_half)
        except (CryptoError, ValueError) as e:
            logger.error("password_derivation_failed", error_type=type(e).__name__)
            return Failure(f"password derivation failed: {type(e).__name__}")

    return Success(OwfPassword(low + high))


@attrs.define(frozen=True)
class CredentialChain:
    """
    Authenticator construction and return-authenticator validation.

    A snapshot of the chain of one established session. Validation does not
    change the chain in place; it returns the ChainAdvanced event the caller
    feeds back into the channel state machine.

    Advancement:
        authenticator.credential = Cred(seed, ts)
        expected                 = Cred(seed, ts + 1)
        new seed                 = seed with ts + 1 added to word 0
    """

    session_key: SessionKey
    seed: NetrCredential
    timestamp: int = 0

    @classmethod
    def from_session(cls, state: SessionState) -> CredentialChain:
        if state.session_key is None or state.client_credential is None:
            raise ValueError("credential chain requires an established session")
        return cls(
            session_key=state.session_key,
            seed=state.client_credential,
            timestamp=state.timestamp,
        )

    def build_authenticator(
        self, timestamp: int, max_attempts: int = MAX_AUTHENTICATOR_ATTEMPTS
    ) -> Result[NetlogonAuthenticator, str]:
        """
        Build the authenticator for the next authenticated call.

        When the credential fails the DC mitigation check the timestamp is
        bumped by one and the credential recomputed. The returned
        authenticator carries the timestamp actually used.
        """
        ts = timestamp & 0xFFFFFFFF
        for attempt in range(1, max_attempts + 1):
            result = compute_credential(self.session_key, self.seed, ts, retry_allowed=True)
            if isinstance(result, Success):
                if attempt > 1:
                    logger.debug("authenticator_regenerated", attempts=attempt)
                return Success(NetlogonAuthenticator(credential=result.unwrap(), timestamp=ts))
            if result.failure() is CredentialFault.FAILURE:
                return Failure("authenticator computation failed")
            ts = (ts + 1) & 0xFFFFFFFF

        logger.error("authenticator_exhausted", attempts=max_attempts)
        return Failure(f"no authenticator passed the uniqueness check in {max_attempts} attempts")

    def validate(
        self, sent: NetlogonAuthenticator, returned: NetlogonAuthenticator
    ) -> Result[ChainAdvanced, str]:
        """
        Check the server's return authenticator against ``sent``.

        Returns:
            Success(ChainAdvanced) carrying the next seed, server credential
            and timestamp
            Failure(reason) on mismatch or computation failure
        """
        next_ts = (sent.timestamp + 1) & 0xFFFFFFFF
        expected = compute_credential(self.session_key, self.seed, next_ts)
        if isinstance(expected, Failure):
            return Failure("return authenticator computation failed")

        expected_credential = expected.unwrap()
        if not constant_time_compare(expected_credential.data, returned.credential.data):
            logger.warning("return_authenticator_mismatch", timestamp=next_ts)
            return Failure("return authenticator mismatch")

        return Success(
            ChainAdvanced(
                client_credential=self.seed.advanced(next_ts),
                server_credential=expected_credential,
                timestamp=next_ts,
                credential_generation=self.session_key.generation,
            )
        )
