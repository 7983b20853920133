"""
netrauth Simulated Domain Controller

In-process RpcTransport that plays the server side of the NETLOGON
challenge/response, using the same derivation code as the client. Lets the
secure-channel client be exercised end to end without a live DC.

Fault hooks (refused password change, tampered credentials, failed opens
and calls) drive the failure paths.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import attrs
import structlog
from attrs import field
from returns.result import Failure

from netrauth.core.crypto import (
    compute_password_hash,
    constant_time_compare,
    secure_random_bytes,
)
from netrauth.core.exceptions import TransportError
from netrauth.core.types import (
    CREDENTIAL_SIZE,
    KeyStrength,
    NegotiateFlags,
    NetlogonAuthenticator,
    NetrCredential,
    NtStatus,
    PasswordHash,
    SessionKey,
    TrustPassword,
)
from netrauth.netlogon.challenge import passes_dc_mitigation
from netrauth.netlogon.credentials import compute_credential
from netrauth.netlogon.session_key import (
    legacy_session_key_from_hash,
    strong_session_key_from_hash,
)
from netrauth.netlogon.types import (
    NetrOpnum,
    ServerAuthenticate2Request,
    ServerAuthenticate2Response,
    ServerPasswordSetRequest,
    ServerPasswordSetResponse,
    ServerReqChallengeRequest,
    ServerReqChallengeResponse,
)
from netrauth.transport.rpc import IpcCredentials, RpcHandle, SecurityContext

logger = structlog.get_logger()


def _flip_first_byte(credential: NetrCredential) -> NetrCredential:
    data = bytearray(credential.data)
    data[0] ^= 0xFF
    return NetrCredential(bytes(data))


@attrs.define
class ServerChannel:
    """Server-side state of one computer's secure channel."""

    client_challenge: NetrCredential
    server_challenge: NetrCredential
    session_key: Optional[SessionKey] = None
    seed: Optional[NetrCredential] = None
    negotiated_flags: int = 0


@attrs.define
class SimulatedDomainController:
    """
    RpcTransport backed by an in-memory account database.

    Example:
        dc = SimulatedDomainController()
        dc.add_account("WS01", "Machine-Password-1")
        client = create_netlogon_client(identity, store, transport=dc)
        client.establish_secure_channel("dc01.example.com", "EXAMPLE")
    """

    supported_flags: int = NegotiateFlags.default_proposal()
    enforce_mitigation: bool = True
    random_source: Callable[[int], bytes] = secure_random_bytes

    # Fault hooks
    open_failure_status: Optional[int] = None
    failing_opnums: Set[int] = field(factory=set)
    refuse_password_change: bool = False
    tamper_server_credential: bool = False
    tamper_return_authenticator: bool = False

    # Observations
    calls: List[Tuple[int, Any]] = field(factory=list)
    open_handles: List[RpcHandle] = field(factory=list)
    closed_handles: List[RpcHandle] = field(factory=list)
    security_contexts: List[SecurityContext] = field(factory=list)

    _accounts: Dict[str, PasswordHash] = field(factory=dict, repr=False)
    _channels: Dict[str, ServerChannel] = field(factory=dict, repr=False)

    # -------------------------------------------------------------------------
    # Account database
    # -------------------------------------------------------------------------

    def add_account(self, hostname: str, password: str) -> None:
        """Create or reset the trust account ``HOSTNAME$``."""
        self._accounts[f"{hostname.upper()}$"] = compute_password_hash(
            TrustPassword.from_plaintext(password)
        )

    def add_account_hash(self, hostname: str, nt_hash: bytes) -> None:
        self._accounts[f"{hostname.upper()}$"] = PasswordHash(nt_hash)

    def account_hash(self, hostname: str) -> Optional[bytes]:
        stored = self._accounts.get(f"{hostname.upper()}$")
        return None if stored is None else bytes(stored)

    def channel(self, hostname: str) -> Optional[ServerChannel]:
        return self._channels.get(hostname.upper())

    # -------------------------------------------------------------------------
    # RpcTransport
    # -------------------------------------------------------------------------

    def open(self, server: str, domain: str, credentials: IpcCredentials) -> RpcHandle:
        return self._open(server, domain, secure=False, auth_context_id=0)

    def open_secure(
        self,
        server: str,
        domain: str,
        credentials: IpcCredentials,
        security_context: SecurityContext,
    ) -> RpcHandle:
        self.security_contexts.append(security_context)
        return self._open(
            server, domain, secure=True, auth_context_id=security_context.auth_context_id
        )

    def call(self, handle: RpcHandle, opnum: int, request: Any) -> Any:
        if handle.closed:
            raise TransportError("call on a closed handle")
        if opnum in self.failing_opnums:
            logger.debug("simulated_call_failure", opnum=opnum)
            raise TransportError(f"simulated failure of opnum {opnum}")

        self.calls.append((opnum, request))
        handlers = {
            NetrOpnum.SERVER_REQ_CHALLENGE: self._server_req_challenge,
            NetrOpnum.SERVER_AUTHENTICATE2: self._server_authenticate2,
            NetrOpnum.SERVER_PASSWORD_SET: self._server_password_set,
        }
        handler = handlers.get(opnum)
        if handler is None:
            raise TransportError(f"opnum {opnum} not supported", NtStatus.UNSUCCESSFUL)
        return handler(request)

    def close(self, handle: RpcHandle) -> None:
        if not handle.closed:
            handle.closed = True
            self.closed_handles.append(handle)

    def _open(self, server: str, domain: str, secure: bool, auth_context_id: int) -> RpcHandle:
        if self.open_failure_status is not None:
            raise TransportError(
                f"simulated bind failure to {server}", self.open_failure_status
            )
        handle = RpcHandle(
            server=server, domain=domain, secure=secure, auth_context_id=auth_context_id
        )
        self.open_handles.append(handle)
        return handle

    # -------------------------------------------------------------------------
    # NETLOGON server side
    # -------------------------------------------------------------------------

    def _server_req_challenge(
        self, request: ServerReqChallengeRequest
    ) -> ServerReqChallengeResponse:
        if self.enforce_mitigation and not passes_dc_mitigation(request.client_challenge.data):
            logger.info("client_challenge_rejected", computer=request.computer_name)
            return ServerReqChallengeResponse(status=NtStatus.ACCESS_DENIED)

        server_challenge = NetrCredential(self.random_source(CREDENTIAL_SIZE))
        self._channels[request.computer_name.upper()] = ServerChannel(
            client_challenge=request.client_challenge,
            server_challenge=server_challenge,
        )
        return ServerReqChallengeResponse(server_challenge=server_challenge)

    def _server_authenticate2(
        self, request: ServerAuthenticate2Request
    ) -> ServerAuthenticate2Response:
        password_hash = self._accounts.get(request.account_name.upper())
        if password_hash is None:
            return ServerAuthenticate2Response(status=NtStatus.NO_TRUST_SAM_ACCOUNT)

        channel = self._channels.get(request.computer_name.upper())
        if channel is None:
            return ServerAuthenticate2Response(status=NtStatus.ACCESS_DENIED)

        negotiated = request.negotiate_flags & self.supported_flags
        derive = (
            strong_session_key_from_hash
            if KeyStrength.from_flags(negotiated) is KeyStrength.STRONG
            else legacy_session_key_from_hash
        )
        key_result = derive(password_hash, channel.client_challenge, channel.server_challenge)
        if isinstance(key_result, Failure):
            return ServerAuthenticate2Response(status=NtStatus.UNSUCCESSFUL)
        session_key = key_result.unwrap()

        expected = compute_credential(session_key, channel.client_challenge).unwrap()
        if not constant_time_compare(expected.data, request.client_credential.data):
            logger.info("client_credential_rejected", computer=request.computer_name)
            session_key.wipe()
            del self._channels[request.computer_name.upper()]
            return ServerAuthenticate2Response(status=NtStatus.ACCESS_DENIED)

        server_credential = compute_credential(session_key, channel.server_challenge).unwrap()
        if self.tamper_server_credential:
            server_credential = _flip_first_byte(server_credential)

        channel.session_key = session_key
        channel.seed = request.client_credential
        channel.negotiated_flags = negotiated
        return ServerAuthenticate2Response(
            server_credential=server_credential, negotiate_flags=negotiated
        )

    def _server_password_set(
        self, request: ServerPasswordSetRequest
    ) -> ServerPasswordSetResponse:
        channel = self._channels.get(request.computer_name.upper())
        if channel is None or channel.session_key is None or channel.seed is None:
            return ServerPasswordSetResponse(status=NtStatus.ACCESS_DENIED)

        authenticator = request.authenticator
        expected = compute_credential(
            channel.session_key, channel.seed, authenticator.timestamp
        ).unwrap()
        if not constant_time_compare(expected.data, authenticator.credential.data):
            logger.info("authenticator_rejected", computer=request.computer_name)
            return ServerPasswordSetResponse(status=NtStatus.ACCESS_DENIED)
        if self.enforce_mitigation and not passes_dc_mitigation(authenticator.credential.data):
            return ServerPasswordSetResponse(status=NtStatus.ACCESS_DENIED)

        if self.refuse_password_change:
            logger.info("password_change_refused", computer=request.computer_name)
            return ServerPasswordSetResponse(status=NtStatus.ACCESS_DENIED)

        next_ts = (authenticator.timestamp + 1) & 0xFFFFFFFF
        return_credential = compute_credential(channel.session_key, channel.seed, next_ts).unwrap()
        channel.seed = channel.seed.advanced(next_ts)
        if self.tamper_return_authenticator:
            return_credential = _flip_first_byte(return_credential)

        self._accounts[request.account_name.upper()] = PasswordHash(request.new_password)
        return ServerPasswordSetResponse(
            return_authenticator=NetlogonAuthenticator(
                credential=return_credential, timestamp=next_ts
            )
        )
