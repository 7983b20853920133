"""
netrauth Configuration

Service toggles, local machine identity, and the trust-password store.

The toggles mirror the service's ``netlogon_flags`` word: every bit that is
set disables a feature, and the default word 0 enables everything. They are
read once at construction; changing them means building a new client.
"""

from __future__ import annotations

import threading
from enum import IntFlag
from typing import Optional, Protocol, runtime_checkable

import attrs
import structlog
from attrs import field

from netrauth.core.types import NegotiateFlags, PasswordKind, TrustPassword

logger = structlog.get_logger()


class ConfigFlags(IntFlag):
    """Bits of the ``netlogon_flags`` service property."""

    DISABLE_SECURE_RPC = 0x00000001
    DISABLE_RESPONSE_VERIFICATION = 0x00000002
    DISABLE_LOGON_EX = 0x00000004


@attrs.define(frozen=True)
class NetlogonConfig:
    """
    Secure-channel feature toggles.

    disable_secure_rpc: Bind later calls without the Netlogon security
        context. SECURE_RPC is then left out of the proposed flags so the
        server cannot negotiate it.
    disable_response_verification: Have the transport ignore signature
        verification failures on responses.
    disable_logon_ex: Downstream logon code uses SamLogon, with
        authenticators, instead of SamLogonEx.
    """

    disable_secure_rpc: bool = False
    disable_response_verification: bool = False
    disable_logon_ex: bool = False

    @classmethod
    def from_flags(cls, flags: int) -> NetlogonConfig:
        unknown = flags & ~int(
            ConfigFlags.DISABLE_SECURE_RPC
            | ConfigFlags.DISABLE_RESPONSE_VERIFICATION
            | ConfigFlags.DISABLE_LOGON_EX
        )
        if unknown:
            logger.warning("unknown_netlogon_flags", flags=hex(unknown))
        return cls(
            disable_secure_rpc=bool(flags & ConfigFlags.DISABLE_SECURE_RPC),
            disable_response_verification=bool(flags & ConfigFlags.DISABLE_RESPONSE_VERIFICATION),
            disable_logon_ex=bool(flags & ConfigFlags.DISABLE_LOGON_EX),
        )

    def to_flags(self) -> int:
        flags = ConfigFlags(0)
        if self.disable_secure_rpc:
            flags |= ConfigFlags.DISABLE_SECURE_RPC
        if self.disable_response_verification:
            flags |= ConfigFlags.DISABLE_RESPONSE_VERIFICATION
        if self.disable_logon_ex:
            flags |= ConfigFlags.DISABLE_LOGON_EX
        return int(flags)

    @property
    def use_secure_rpc(self) -> bool:
        return not self.disable_secure_rpc

    @property
    def verify_responses(self) -> bool:
        return not self.disable_response_verification

    @property
    def use_logon_ex(self) -> bool:
        return not self.disable_logon_ex

    def proposed_flags(self) -> int:
        """Negotiate flags to propose in NetrServerAuthenticate2."""
        flags = NegotiateFlags.default_proposal()
        if self.disable_secure_rpc:
            flags &= ~int(NegotiateFlags.SECURE_RPC)
        return flags


@attrs.define(frozen=True, slots=True)
class IpcCredentials:
    """Credentials for the IPC$ connection that carries the NETLOGON pipe."""

    username: str = ""
    domain: str = ""
    password: str = field(default="", repr=False)

    @classmethod
    def anonymous(cls) -> IpcCredentials:
        return cls()


def _netbios_name(instance: object, attribute: attrs.Attribute, value: str) -> None:
    if not value:
        raise ValueError(f"{attribute.name} must not be empty")
    if len(value) > 15:
        raise ValueError(f"{attribute.name} exceeds 15 characters: {value!r}")


@attrs.define(frozen=True)
class MachineIdentity:
    """
    Local identity used to establish the secure channel.

    Args:
        hostname: NetBIOS computer name, without the trailing '$'
        netbios_domain: NetBIOS domain name
        fqdn_domain: DNS domain name
        ipc_credentials: Credentials for the IPC$ connection
    """

    hostname: str = field(converter=str.upper, validator=_netbios_name)
    netbios_domain: str = field(converter=str.upper, validator=_netbios_name)
    fqdn_domain: str = field(converter=str.lower)
    ipc_credentials: IpcCredentials = field(factory=IpcCredentials.anonymous)

    @property
    def account_name(self) -> str:
        return f"{self.hostname}$"


@runtime_checkable
class TrustPasswordStore(Protocol):
    """Source and sink of the machine trust-account secret."""

    def load(self) -> Optional[TrustPassword]:
        """
        Return a fresh copy of the current secret, or None if none is set.

        The caller owns the copy and wipes it after use.
        """
        ...

    def save(self, password: TrustPassword) -> None:
        """Replace the current secret. The store takes ownership of ``password``."""
        ...


@attrs.define
class InMemoryTrustPasswordStore:
    """
    TrustPasswordStore holding the secret in process memory.

    Holds exactly one secret; replacing it wipes the previous one.
    """

    _password: Optional[TrustPassword] = field(default=None, alias="password", repr=False)
    _lock: threading.Lock = attrs.Factory(threading.Lock)

    @classmethod
    def from_plaintext(cls, password: str) -> InMemoryTrustPasswordStore:
        return cls(password=TrustPassword.from_plaintext(password))

    def load(self) -> Optional[TrustPassword]:
        with self._lock:
            if self._password is None or self._password.wiped:
                return None
            return TrustPassword(bytes(self._password), kind=self._password.kind)

    def save(self, password: TrustPassword) -> None:
        with self._lock:
            previous = self._password
            self._password = password
            if previous is not None:
                previous.wipe()
        logger.info("trust_password_saved", kind=password.kind.name)

    @property
    def kind(self) -> Optional[PasswordKind]:
        with self._lock:
            return None if self._password is None else self._password.kind
