"""
netrauth NETLOGON Secure-Channel Client

Establishes a Netlogon secure channel with a domain controller and keeps
its credential chain (MS-NRPC 3.1.4.1 to 3.1.4.5):

    ServerReqChallenge   -> exchange 8-byte challenges
    ServerAuthenticate2  -> prove knowledge of the trust password
    ServerPasswordSet    -> rotate the trust password under the chain

Each establishment attempt runs in a fresh SessionState driven through a
channel state machine. Any failure moves the channel to FAILED and wipes the
session key; the RPC session used for negotiation is closed on every path.
"""

from __future__ import annotations

import itertools
import threading
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import attrs
import structlog
from returns.result import Failure

from netrauth.config import MachineIdentity, NetlogonConfig, TrustPasswordStore
from netrauth.core.crypto import compute_password_hash, constant_time_compare, secure_random_bytes
from netrauth.core.exceptions import (
    CredentialMismatch,
    DerivationError,
    InvariantViolation,
    NetrAuthError,
    ProtocolStatusError,
    StateError,
    TransportError,
)
from netrauth.core.state_machine import StateMachineBase, Transition, TransitionEntry
from netrauth.core.types import (
    KeyStrength,
    NegotiateFlags,
    NetlogonStatus,
    NtStatus,
    OwfPassword,
    TrustPassword,
)
from netrauth.netlogon.challenge import generate_client_challenge
from netrauth.netlogon.credentials import (
    CredentialChain,
    compute_credential,
    derive_new_password,
)
from netrauth.netlogon.session_key import derive_session_key
from netrauth.netlogon.types import (
    AuthenticateSent,
    ChainAdvanced,
    ChallengeExchanged,
    ChannelFailed,
    ChannelState,
    NetrOpnum,
    SecureChannelType,
    ServerAuthenticate2Request,
    ServerCredentialVerified,
    ServerPasswordSetRequest,
    ServerReqChallengeRequest,
    SessionState,
)
from netrauth.transport.rpc import RpcHandle, RpcTransport, SecurityContext

logger = structlog.get_logger()


def _unix_time() -> int:
    return int(time.time())


# Step that was in progress when a failure hit the channel in a given state.
_FAILURE_STAGES = {
    ChannelState.UNINITIALIZED: "challenge",
    ChannelState.CHALLENGING: "session_key",
    ChannelState.AUTHENTICATING: "authenticate",
    ChannelState.ESTABLISHED: "established",
}


# =============================================================================
# CHANNEL STATE MACHINE
# =============================================================================


@attrs.define
class NetlogonChannelStateMachine(StateMachineBase[ChannelState, Any, SessionState]):
    """
    State machine of one secure-channel attempt.

    States:
    - UNINITIALIZED: Nothing exchanged
    - CHALLENGING: Challenges exchanged
    - AUTHENTICATING: Session key derived, ServerAuthenticate2 sent
    - ESTABLISHED: Server credential verified; the chain may advance
    - FAILED: Terminal; no key material held
    """

    def initial_state(self) -> ChannelState:
        return ChannelState.UNINITIALIZED

    def transition_table(self) -> Dict[Tuple[ChannelState, type], TransitionEntry]:
        table: Dict[Tuple[ChannelState, type], TransitionEntry] = {
            (ChannelState.UNINITIALIZED, ChallengeExchanged): (
                ChannelState.CHALLENGING,
                self._handle_challenge,
            ),
            (ChannelState.CHALLENGING, AuthenticateSent): (
                ChannelState.AUTHENTICATING,
                self._handle_authenticate,
            ),
            (ChannelState.AUTHENTICATING, ServerCredentialVerified): (
                ChannelState.ESTABLISHED,
                self._handle_verified,
            ),
            (ChannelState.ESTABLISHED, ChainAdvanced): (
                ChannelState.ESTABLISHED,
                self._handle_chain_advanced,
            ),
        }
        for state in ChannelState:
            if state is not ChannelState.FAILED:
                table[(state, ChannelFailed)] = (ChannelState.FAILED, self._handle_failed)
        return table

    @staticmethod
    def _handle_challenge(event: ChallengeExchanged, ctx: SessionState) -> SessionState:
        return attrs.evolve(
            ctx,
            hostname=event.hostname,
            netbios_domain=event.netbios_domain,
            fqdn_domain=event.fqdn_domain,
            server_name=event.server_name,
            client_challenge=event.client_challenge,
            server_challenge=event.server_challenge,
        )

    @staticmethod
    def _handle_authenticate(event: AuthenticateSent, ctx: SessionState) -> SessionState:
        return attrs.evolve(
            ctx,
            session_key=event.session_key,
            key_strength=event.session_key.strength,
            key_generation=event.session_key.generation,
            client_credential=event.client_credential,
            server_credential=event.server_credential,
            credential_generation=event.credential_generation,
            proposed_flags=event.proposed_flags,
        )

    @staticmethod
    def _handle_verified(event: ServerCredentialVerified, ctx: SessionState) -> SessionState:
        return attrs.evolve(
            ctx,
            negotiated_flags=event.negotiated_flags,
            sequence_number=event.sequence_number,
            established=True,
        )

    @staticmethod
    def _handle_chain_advanced(event: ChainAdvanced, ctx: SessionState) -> SessionState:
        return attrs.evolve(
            ctx,
            client_credential=event.client_credential,
            server_credential=event.server_credential,
            timestamp=event.timestamp,
            credential_generation=event.credential_generation,
        )

    @staticmethod
    def _handle_failed(event: ChannelFailed, ctx: SessionState) -> SessionState:
        return attrs.evolve(
            ctx,
            session_key=None,
            client_credential=None,
            server_credential=None,
            established=False,
            failed_stage=event.stage,
            error_message=event.reason,
        )


def _key_requires_challenges(state: ChannelState, ctx: SessionState) -> bool:
    if ctx.session_key is None:
        return True
    return ctx.client_challenge is not None and ctx.server_challenge is not None


def _established_requires_verified_key(state: ChannelState, ctx: SessionState) -> bool:
    if state is not ChannelState.ESTABLISHED:
        return not ctx.established
    return ctx.established and ctx.session_key is not None and ctx.server_credential is not None


def _failed_holds_no_key(state: ChannelState, ctx: SessionState) -> bool:
    if state is not ChannelState.FAILED:
        return True
    return ctx.session_key is None and not ctx.established


def _credentials_share_key_generation(state: ChannelState, ctx: SessionState) -> bool:
    if ctx.client_credential is None or ctx.server_credential is None:
        return True
    return ctx.credential_generation == ctx.key_generation


def new_channel_state_machine() -> NetlogonChannelStateMachine:
    """Fresh state machine with the session invariants registered."""
    machine = NetlogonChannelStateMachine(
        _state=ChannelState.UNINITIALIZED,
        _context=SessionState(),
    )
    machine.add_invariant("key_requires_challenges", _key_requires_challenges)
    machine.add_invariant("established_requires_verified_key", _established_requires_verified_key)
    machine.add_invariant("failed_holds_no_key", _failed_holds_no_key)
    machine.add_invariant("credentials_share_key_generation", _credentials_share_key_generation)
    return machine


# =============================================================================
# NETLOGON CLIENT
# =============================================================================


@attrs.define
class NetlogonClient:
    """
    Netlogon secure-channel client for a domain member.

    Attempts and password rotations are serialized by a per-client lock.
    Public operations return a NetlogonStatus; internal failures never
    escape as exceptions, except InvariantViolation.

    Example:
        client = create_netlogon_client(identity, store, transport)
        if client.establish_secure_channel("dc01.example.com", "EXAMPLE").ok:
            handle = client.open_secure_session("dc01.example.com", "EXAMPLE")
            try:
                client.rotate_trust_password(handle)
            finally:
                client.close_session(handle)
    """

    identity: MachineIdentity
    password_store: TrustPasswordStore
    transport: RpcTransport
    config: NetlogonConfig = attrs.Factory(NetlogonConfig)
    secure_channel_type: SecureChannelType = SecureChannelType.WORKSTATION
    timestamp_source: Callable[[], int] = _unix_time
    random_source: Callable[[int], bytes] = secure_random_bytes

    _state_machine: NetlogonChannelStateMachine = attrs.Factory(new_channel_state_machine)
    _lock: threading.RLock = attrs.Factory(threading.RLock)
    _sequence: Iterator[int] = attrs.Factory(lambda: itertools.count(1))
    _key_generations: Iterator[int] = attrs.Factory(lambda: itertools.count(1))
    _auth_context_ids: Iterator[int] = attrs.Factory(lambda: itertools.count(1))
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ChannelState:
        return self._state_machine.state

    @property
    def context(self) -> SessionState:
        return self._state_machine.context

    @property
    def established(self) -> bool:
        return self.state is ChannelState.ESTABLISHED

    @property
    def negotiated_flags(self) -> int:
        return self.context.negotiated_flags

    @property
    def uses_logon_ex(self) -> bool:
        """Whether downstream logon code should use SamLogonEx."""
        return self.config.use_logon_ex

    def get_trace(self) -> List[Transition[ChannelState]]:
        return self._state_machine.get_trace()

    def export_trace_json(self) -> str:
        return self._state_machine.export_trace_json()

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def open_session(self, server: str, domain: str) -> RpcHandle:
        """
        Open an unauthenticated NETLOGON session.

        Raises:
            TransportError: The bind failed
        """
        return self.transport.open(server, domain, self.identity.ipc_credentials)

    def open_secure_session(self, server: str, domain: str) -> RpcHandle:
        """
        Open a session for calls made over the established channel.

        Uses a Netlogon security context when SECURE_RPC was negotiated,
        with a fresh auth context id for each bind; otherwise falls back to
        an unauthenticated bind.

        Raises:
            StateError: No established channel
            TransportError: The bind failed
        """
        with self._lock:
            if self.state is not ChannelState.ESTABLISHED:
                raise StateError(f"no established channel (state {self.state.name})")

            ctx = self.context
            if not ctx.negotiated_flags & NegotiateFlags.SECURE_RPC:
                self._logger.debug("secure_rpc_not_negotiated", server=server)
                return self.open_session(server, domain)

            security_context = SecurityContext(
                auth_context_id=next(self._auth_context_ids),
                verify_responses=self.config.verify_responses,
                hostname=ctx.hostname,
                netbios_domain=ctx.netbios_domain,
                fqdn_domain=ctx.fqdn_domain,
                session_key=ctx.session_key,
            )
            self._logger.debug(
                "secure_bind",
                server=server,
                auth_context_id=security_context.auth_context_id,
                verify_responses=security_context.verify_responses,
            )
            return self.transport.open_secure(
                server, domain, self.identity.ipc_credentials, security_context
            )

    def close_session(self, handle: RpcHandle) -> None:
        try:
            self.transport.close(handle)
        except TransportError as e:
            self._logger.warning("session_close_failed", server=handle.server, error=e.message)

    # -------------------------------------------------------------------------
    # Establishment
    # -------------------------------------------------------------------------

    def establish_secure_channel(
        self, server: str, domain: str, flags: Optional[int] = None
    ) -> NetlogonStatus:
        """
        Run challenge exchange and authentication against ``server``.

        Args:
            server: Domain controller name, normally an FQDN
            domain: Domain name used for the IPC$ connection
            flags: Negotiate flags to propose; defaults to the configured
                proposal. SECURE_RPC is removed when disabled in config.

        Returns:
            SUCCESS, the open failure's status, or UNSUCCESSFUL
        """
        with self._lock:
            self._discard_session()

            proposed = self.config.proposed_flags() if flags is None else flags
            if self.config.disable_secure_rpc:
                proposed &= ~int(NegotiateFlags.SECURE_RPC)

            try:
                handle = self.open_session(server, domain)
            except TransportError as e:
                self._logger.error(
                    "netlogon_open_failed",
                    server=server,
                    status=NtStatus.describe(e.code) if e.code is not None else None,
                )
                self._fail("open", e.message)
                status = NetlogonStatus.from_nt_status(e.code)
                return NetlogonStatus.UNSUCCESSFUL if status.ok else status

            try:
                self._negotiate(handle, server, proposed)
                return NetlogonStatus.SUCCESS
            except InvariantViolation:
                self._fail(_FAILURE_STAGES.get(self.state, "failed"), "invariant violated")
                raise
            except NetrAuthError as e:
                self._fail(_FAILURE_STAGES.get(self.state, "failed"), e.message)
                return NetlogonStatus.UNSUCCESSFUL
            except Exception as e:
                self._logger.error(
                    "netlogon_negotiation_error",
                    server=server,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                self._fail(_FAILURE_STAGES.get(self.state, "failed"), f"{type(e).__name__}: {e}")
                return NetlogonStatus.UNSUCCESSFUL
            finally:
                self.close_session(handle)

    def reset(self) -> None:
        """Tear down the channel, wiping its key, and return to UNINITIALIZED."""
        with self._lock:
            self._discard_session()

    def _negotiate(self, handle: RpcHandle, server: str, proposed: int) -> None:
        identity = self.identity
        server_name = f"\\\\{server}"

        # UNINITIALIZED -> CHALLENGING
        client_challenge = generate_client_challenge(self.random_source)
        response = self._call(
            handle,
            NetrOpnum.SERVER_REQ_CHALLENGE,
            ServerReqChallengeRequest(
                server_name=server_name,
                computer_name=identity.hostname,
                client_challenge=client_challenge,
            ),
        )
        if response.server_challenge is None:
            raise ProtocolStatusError(
                NetrOpnum.SERVER_REQ_CHALLENGE, NtStatus.UNSUCCESSFUL, "no server challenge"
            )
        self._process(
            ChallengeExchanged(
                hostname=identity.hostname,
                netbios_domain=identity.netbios_domain,
                fqdn_domain=identity.fqdn_domain,
                server_name=server_name,
                client_challenge=client_challenge,
                server_challenge=response.server_challenge,
            )
        )

        # CHALLENGING -> AUTHENTICATING
        ctx = self.context
        strength = KeyStrength.from_flags(proposed)
        password = self.password_store.load()
        if password is None:
            raise DerivationError("trust password unavailable")

        key_result = derive_session_key(
            strength,
            password,
            ctx.client_challenge,
            ctx.server_challenge,
            generation=next(self._key_generations),
        )
        if isinstance(key_result, Failure):
            raise DerivationError(key_result.failure())
        session_key = key_result.unwrap()

        client_credential = compute_credential(session_key, ctx.client_challenge)
        server_credential = compute_credential(session_key, ctx.server_challenge)
        credential_generation = session_key.generation
        if isinstance(client_credential, Failure) or isinstance(server_credential, Failure):
            session_key.wipe()
            raise DerivationError("credential computation failed")

        try:
            self._process(
                AuthenticateSent(
                    session_key=session_key,
                    client_credential=client_credential.unwrap(),
                    server_credential=server_credential.unwrap(),
                    proposed_flags=proposed,
                    credential_generation=credential_generation,
                )
            )
        except NetrAuthError:
            session_key.wipe()
            raise

        response = self._call(
            handle,
            NetrOpnum.SERVER_AUTHENTICATE2,
            ServerAuthenticate2Request(
                server_name=server_name,
                account_name=ctx.account_name,
                secure_channel_type=self.secure_channel_type,
                computer_name=identity.hostname,
                client_credential=client_credential.unwrap(),
                negotiate_flags=proposed,
            ),
        )

        # AUTHENTICATING -> ESTABLISHED
        if response.server_credential is None:
            raise ProtocolStatusError(
                NetrOpnum.SERVER_AUTHENTICATE2, NtStatus.UNSUCCESSFUL, "no server credential"
            )
        expected = self.context.server_credential
        if not constant_time_compare(expected.data, response.server_credential.data):
            self._logger.warning(
                "server_credential_mismatch",
                server=server,
                account=ctx.account_name,
                security_event=True,
            )
            raise CredentialMismatch("server credential mismatch")

        negotiated = proposed & response.negotiate_flags
        self._process(
            ServerCredentialVerified(
                negotiated_flags=negotiated,
                sequence_number=next(self._sequence),
            )
        )
        self._logger.info(
            "secure_channel_established",
            server=server,
            account=ctx.account_name,
            strength=strength.name,
            negotiated_flags=hex(negotiated),
            secure_rpc=bool(negotiated & NegotiateFlags.SECURE_RPC),
        )

    # -------------------------------------------------------------------------
    # Password rotation
    # -------------------------------------------------------------------------

    def rotate_trust_password(self, handle: RpcHandle) -> NetlogonStatus:
        """
        Change the trust password over the established channel.

        The new password is derived from the current one and the session
        key. It replaces the stored secret only after the server's return
        authenticator validates.

        Returns:
            SUCCESS
            PASSWORD_CHANGE_REFUSED if the server refused; the old password
            stays valid and the channel stays established
            UNSUCCESSFUL otherwise; a transport failure or a bad return
            authenticator also fails the channel
        """
        with self._lock:
            if self.state is not ChannelState.ESTABLISHED:
                self._logger.warning("rotation_without_channel", state=self.state.name)
                return NetlogonStatus.UNSUCCESSFUL

            ctx = self.context
            chain = CredentialChain.from_session(ctx)
            authenticator = chain.build_authenticator(self.timestamp_source())
            if isinstance(authenticator, Failure):
                self._logger.error("authenticator_failed", reason=authenticator.failure())
                return NetlogonStatus.UNSUCCESSFUL
            sent = authenticator.unwrap()

            new_password = self._derive_rotated_password(ctx)
            if new_password is None:
                return NetlogonStatus.UNSUCCESSFUL

            with new_password:
                request = ServerPasswordSetRequest(
                    server_name=ctx.server_name,
                    account_name=ctx.account_name,
                    secure_channel_type=self.secure_channel_type,
                    computer_name=ctx.hostname,
                    authenticator=sent,
                    new_password=bytes(new_password),
                )
                try:
                    response = self.transport.call(handle, NetrOpnum.SERVER_PASSWORD_SET, request)
                except TransportError as e:
                    self._logger.error("password_set_call_failed", error=e.message)
                    self._fail("password_set", e.message)
                    return NetlogonStatus.UNSUCCESSFUL
                except Exception as e:
                    self._logger.error(
                        "password_set_call_failed", error_type=type(e).__name__, error=str(e)
                    )
                    self._fail("password_set", f"{type(e).__name__}: {e}")
                    return NetlogonStatus.UNSUCCESSFUL

                if response.status != NtStatus.SUCCESS:
                    self._logger.warning(
                        "password_change_refused",
                        account=ctx.account_name,
                        status=NtStatus.describe(response.status),
                    )
                    return NetlogonStatus.PASSWORD_CHANGE_REFUSED

                advanced = chain.validate(sent, response.return_authenticator)
                if isinstance(advanced, Failure):
                    self._logger.warning(
                        "return_authenticator_rejected",
                        account=ctx.account_name,
                        security_event=True,
                    )
                    self._fail("password_set", advanced.failure())
                    return NetlogonStatus.UNSUCCESSFUL

                self._process(advanced.unwrap())
                self.password_store.save(TrustPassword.from_owf(bytes(new_password)))

            self._logger.info(
                "trust_password_rotated",
                account=ctx.account_name,
                timestamp=self.context.timestamp,
            )
            return NetlogonStatus.SUCCESS

    def _derive_rotated_password(self, ctx: SessionState) -> Optional[OwfPassword]:
        password = self.password_store.load()
        if password is None:
            self._logger.error("trust_password_unavailable", stage="password_set")
            return None

        try:
            with password:
                old_hash = compute_password_hash(password)
        except DerivationError as e:
            self._logger.error("password_hash_failed", stage="password_set", error=e.message)
            return None

        with old_hash:
            result = derive_new_password(ctx.session_key, bytes(old_hash))
        if isinstance(result, Failure):
            self._logger.error("password_derivation_failed", reason=result.failure())
            return None
        return result.unwrap()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _call(self, handle: RpcHandle, opnum: NetrOpnum, request: Any) -> Any:
        response = self.transport.call(handle, opnum, request)
        if response.status != NtStatus.SUCCESS:
            self._logger.warning(
                "netlogon_call_failed",
                opnum=opnum.name,
                status=NtStatus.describe(response.status),
            )
            raise ProtocolStatusError(opnum, response.status)
        return response

    def _process(self, event: Any) -> None:
        result = self._state_machine.process_event(event)
        if isinstance(result, Failure):
            raise StateError(result.failure())

    def _fail(self, stage: str, reason: str) -> None:
        key = self.context.session_key
        self._state_machine.process_event(ChannelFailed(stage=stage, reason=reason))
        if key is not None:
            key.wipe()
        self._logger.info("secure_channel_failed", stage=stage, reason=reason)

    def _discard_session(self) -> None:
        key = self.context.session_key
        if key is not None:
            key.wipe()
        self._state_machine = new_channel_state_machine()


def create_netlogon_client(
    identity: MachineIdentity,
    password_store: TrustPasswordStore,
    transport: RpcTransport,
    config: Optional[NetlogonConfig] = None,
    netlogon_flags: Optional[int] = None,
) -> NetlogonClient:
    """
    Create a Netlogon client.

    Args:
        identity: Local machine identity
        password_store: Holder of the trust password
        transport: RPC transport to the domain controller
        config: Feature toggles; defaults to everything enabled
        netlogon_flags: Service flag word, used when ``config`` is not given

    Example:
        store = InMemoryTrustPasswordStore.from_plaintext(machine_password)
        client = create_netlogon_client(
            MachineIdentity("WS01", "EXAMPLE", "example.com"),
            store,
            transport,
        )
    """
    if config is None:
        config = (
            NetlogonConfig.from_flags(netlogon_flags)
            if netlogon_flags is not None
            else NetlogonConfig()
        )
    return NetlogonClient(
        identity=identity,
        password_store=password_store,
        transport=transport,
        config=config,
    )
