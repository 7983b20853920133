"""
netrauth RPC Transport Interface

The NETLOGON pipe transport is an external collaborator. This module names
what the secure-channel client needs from it: open a session (plain or with
an authenticated security context), dispatch one call, close.

Implementations raise TransportError for bind, connection and dispatch
failures. A call that reached the server and came back with a non-zero NT
status is not a transport failure; the status travels in the response.
"""

from __future__ import annotations

import itertools
from typing import Any, Iterator, Optional, Protocol, runtime_checkable

import attrs
from attrs import field

from netrauth.config import IpcCredentials
from netrauth.core.types import SessionKey


_handle_ids: Iterator[int] = itertools.count(1)


@attrs.define(eq=False)
class RpcHandle:
    """
    An open NETLOGON pipe session.

    Handles compare by identity; ``handle_id`` is for logs only.
    """

    server: str
    domain: str
    secure: bool = False
    auth_context_id: int = 0
    handle_id: int = field(factory=lambda: next(_handle_ids))
    closed: bool = False
    transport_data: Optional[Any] = field(default=None, repr=False)


@attrs.define(eq=False)
class SecurityContext:
    """
    Parameters of an authenticated (Netlogon secure channel) bind.

    ``auth_context_id`` must be unique per bind on a connection. Signing and
    sealing with ``session_key`` are performed by the transport.
    """

    auth_context_id: int
    verify_responses: bool
    hostname: str
    netbios_domain: str
    fqdn_domain: str
    session_key: SessionKey = field(repr=False)


@runtime_checkable
class RpcTransport(Protocol):
    """Operations the secure-channel client consumes from an RPC transport."""

    def open(self, server: str, domain: str, credentials: IpcCredentials) -> RpcHandle:
        """Open an unauthenticated session. Raises TransportError."""
        ...

    def open_secure(
        self,
        server: str,
        domain: str,
        credentials: IpcCredentials,
        security_context: SecurityContext,
    ) -> RpcHandle:
        """Open a session bound with a Netlogon security context. Raises TransportError."""
        ...

    def call(self, handle: RpcHandle, opnum: int, request: Any) -> Any:
        """Dispatch one call; the response carries a ``status`` attribute."""
        ...

    def close(self, handle: RpcHandle) -> None:
        ...
