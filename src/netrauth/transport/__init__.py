"""
netrauth Transport Layer

RPC transport interface consumed by the secure-channel client.

Components:
- rpc: Transport protocol, session handles, security context
- simulated: In-process domain controller for tests and demos
"""

from netrauth.config import IpcCredentials
from netrauth.transport.rpc import RpcHandle, RpcTransport, SecurityContext
from netrauth.transport.simulated import SimulatedDomainController

__all__ = [
    "IpcCredentials",
    "RpcHandle",
    "RpcTransport",
    "SecurityContext",
    "SimulatedDomainController",
]
