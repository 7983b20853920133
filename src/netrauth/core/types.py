"""
netrauth Core Types

Fixed-size value and secret types shared by every component of the
secure-channel client.

Design Principles:
- Secrets live in mutable buffers that can be wiped, never in plain bytes
  attributes that outlive the call that consumes them
- Key slices are named and bounds-checked; the offsets mirror MS-NRPC exactly
- Values exchanged on the wire (challenges, credentials) are immutable
"""

from __future__ import annotations

import hmac
import struct
from enum import Enum, IntEnum, IntFlag, auto
from typing import ClassVar, Optional, Tuple

import attrs
from attrs import field, validators


# =============================================================================
# STATUS CODES
# =============================================================================


class NtStatus(IntEnum):
    """NT status codes that the NETLOGON exchanges report."""

    SUCCESS = 0x00000000
    UNSUCCESSFUL = 0xC0000001
    INVALID_PARAMETER = 0xC000000D
    ACCESS_DENIED = 0xC0000022
    NO_TRUST_SAM_ACCOUNT = 0xC000018B

    @classmethod
    def describe(cls, code: int) -> str:
        """Symbolic name for a status code, hex for unknown codes."""
        try:
            return f"NT_STATUS_{cls(code).name}"
        except ValueError:
            return f"0x{code:08X}"


class NetlogonStatus(Enum):
    """
    Coarse result of a public NetlogonClient operation.

    PASSWORD_CHANGE_REFUSED is the soft failure of a trust password
    rotation: the old password stays valid and the channel stays up.
    """

    SUCCESS = auto()
    UNSUCCESSFUL = auto()
    ACCESS_DENIED = auto()
    INVALID_PARAMETER = auto()
    NO_TRUST_SAM_ACCOUNT = auto()
    PASSWORD_CHANGE_REFUSED = auto()

    @classmethod
    def from_nt_status(cls, code: Optional[int]) -> NetlogonStatus:
        """Map an NT status reported by a collaborator onto a NetlogonStatus."""
        mapping = {
            NtStatus.SUCCESS: cls.SUCCESS,
            NtStatus.INVALID_PARAMETER: cls.INVALID_PARAMETER,
            NtStatus.ACCESS_DENIED: cls.ACCESS_DENIED,
            NtStatus.NO_TRUST_SAM_ACCOUNT: cls.NO_TRUST_SAM_ACCOUNT,
        }
        if code is None:
            return cls.UNSUCCESSFUL
        return mapping.get(code, cls.UNSUCCESSFUL)

    @property
    def ok(self) -> bool:
        return self is NetlogonStatus.SUCCESS


# =============================================================================
# NEGOTIATION
# =============================================================================


class NegotiateFlags(IntFlag):
    """
    NetrServerAuthenticate negotiate flags used by this client.

    MS-NRPC 3.1.4.2. Only the bits that change client behaviour are named;
    BASE covers the legacy capability bits every client proposes.
    """

    BASE = 0x000001FF
    STRONG_KEY = 0x00004000
    SECURE_RPC = 0x40000000

    @classmethod
    def default_proposal(cls) -> int:
        return int(cls.BASE | cls.STRONG_KEY | cls.SECURE_RPC)


class KeyStrength(Enum):
    """
    Session-key derivation variant.

    Chosen once per session from the proposed negotiate flags and threaded
    explicitly through derivation.
    """

    STRONG = auto()
    LEGACY = auto()

    @classmethod
    def from_flags(cls, flags: int) -> KeyStrength:
        if flags & NegotiateFlags.STRONG_KEY:
            return cls.STRONG
        return cls.LEGACY

    @property
    def session_key_length(self) -> int:
        """Significant session-key bytes for this variant."""
        return 16 if self is KeyStrength.STRONG else 8


# =============================================================================
# WIRE VALUES
# =============================================================================


CREDENTIAL_SIZE = 8
_WORD_MASK = 0xFFFFFFFF


def _eight_bytes(instance: object, attribute: attrs.Attribute, value: bytes) -> None:
    if not isinstance(value, bytes) or len(value) != CREDENTIAL_SIZE:
        raise ValueError(f"{attribute.name} must be {CREDENTIAL_SIZE} bytes")


@attrs.define(frozen=True, slots=True)
class NetrCredential:
    """
    An 8-byte challenge or credential value (MS-NRPC NETLOGON_CREDENTIAL).

    Arithmetic on the value always treats it as two little-endian 32-bit
    words and wraps modulo 2**32.
    """

    data: bytes = field(validator=_eight_bytes, repr=False)

    @property
    def words(self) -> Tuple[int, int]:
        return struct.unpack("<II", self.data)

    @classmethod
    def from_words(cls, low: int, high: int) -> NetrCredential:
        return cls(struct.pack("<II", low & _WORD_MASK, high & _WORD_MASK))

    def advanced(self, increment: int) -> NetrCredential:
        """Return this value with ``increment`` added to the first word only."""
        low, high = self.words
        return NetrCredential.from_words(low + increment, high)

    def __add__(self, other: NetrCredential) -> NetrCredential:
        """Word-wise wrapping sum, used for the legacy challenge sum."""
        a_low, a_high = self.words
        b_low, b_high = other.words
        return NetrCredential.from_words(a_low + b_low, a_high + b_high)

    def __bytes__(self) -> bytes:
        return self.data

    def __repr__(self) -> str:
        return f"NetrCredential(<bytes:{CREDENTIAL_SIZE}>)"


# Both names appear throughout the protocol description.
Challenge = NetrCredential
Credential = NetrCredential


@attrs.define(frozen=True, slots=True)
class NetlogonAuthenticator:
    """A credential together with the timestamp it was computed with."""

    credential: NetrCredential
    timestamp: int = field(validator=validators.instance_of(int))

    @classmethod
    def empty(cls) -> NetlogonAuthenticator:
        return cls(credential=NetrCredential(b"\x00" * CREDENTIAL_SIZE), timestamp=0)


# =============================================================================
# SECRET BUFFERS
# =============================================================================


@attrs.define(eq=False, repr=False)
class SecretBytes:
    """
    Secret material held in a wipeable buffer.

    Usable as a context manager: the buffer is zeroed on exit, on both the
    success and the error path. Equality is constant-time.
    """

    SIZE: ClassVar[Optional[int]] = None

    _buf: bytearray = field(converter=bytearray, alias="data")
    _wiped: bool = field(default=False, init=False)

    def __attrs_post_init__(self) -> None:
        if self.SIZE is not None and len(self._buf) != self.SIZE:
            size = len(self._buf)
            self.wipe()
            raise ValueError(f"{type(self).__name__} must be {self.SIZE} bytes, got {size}")

    def __len__(self) -> int:
        return len(self._buf)

    def __bytes__(self) -> bytes:
        self._check_live()
        return bytes(self._buf)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.wipe()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SecretBytes):
            return NotImplemented
        return hmac.compare_digest(bytes(self._buf), bytes(other._buf))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        state = "wiped" if self._wiped else f"<bytes:{len(self._buf)}>"
        return f"{type(self).__name__}({state})"

    @property
    def wiped(self) -> bool:
        return self._wiped

    def is_zero(self) -> bool:
        return not any(self._buf)

    def window(self, start: int, stop: int) -> bytes:
        """Bounds-checked copy of ``[start, stop)``."""
        self._check_live()
        if not 0 <= start < stop <= len(self._buf):
            raise IndexError(
                f"slice [{start}:{stop}) outside {type(self).__name__} of {len(self._buf)} bytes"
            )
        return bytes(self._buf[start:stop])

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._wiped = True

    def _check_live(self) -> None:
        if self._wiped:
            raise ValueError(f"{type(self).__name__} has been wiped")


# DES keys are 56 bits, supplied as 7 bytes.
DES_KEY_SIZE = 7


@attrs.define(eq=False, repr=False)
class PasswordHash(SecretBytes):
    """
    NT one-way hash of the trust password.

    The legacy session key uses bytes [0, 7) and [9, 16); the gap at 7 and 8
    is part of MS-NRPC 3.1.4.3.2, not an off-by-two.
    """

    SIZE: ClassVar[Optional[int]] = 16

    @property
    def low_des_key(self) -> bytes:
        return self.window(0, DES_KEY_SIZE)

    @property
    def skewed_des_key(self) -> bytes:
        return self.window(9, 9 + DES_KEY_SIZE)


@attrs.define(eq=False, repr=False)
class OwfPassword(SecretBytes):
    """16-byte password blob exchanged by NetrServerPasswordSet."""

    SIZE: ClassVar[Optional[int]] = 16

    @property
    def low_half(self) -> bytes:
        return self.window(0, 8)

    @property
    def high_half(self) -> bytes:
        return self.window(8, 16)


SESSION_KEY_STORAGE = 16


@attrs.define(eq=False, repr=False)
class SessionKey(SecretBytes):
    """
    Session key in a 16-byte zero-padded buffer.

    A legacy key has 8 significant bytes; credential computation still reads
    bytes [7, 14), which then includes the padding.
    """

    SIZE: ClassVar[Optional[int]] = SESSION_KEY_STORAGE

    strength: KeyStrength = field(default=KeyStrength.STRONG)
    generation: int = field(default=0)

    @classmethod
    def create(cls, material: bytes, strength: KeyStrength, generation: int = 0) -> SessionKey:
        if len(material) != strength.session_key_length:
            raise ValueError(
                f"{strength.name} session key must be {strength.session_key_length} bytes"
            )
        padded = bytearray(material) + bytearray(SESSION_KEY_STORAGE - len(material))
        return cls(padded, strength=strength, generation=generation)

    @property
    def length(self) -> int:
        return self.strength.session_key_length

    @property
    def low_des_key(self) -> bytes:
        return self.window(0, DES_KEY_SIZE)

    @property
    def high_des_key(self) -> bytes:
        return self.window(DES_KEY_SIZE, 2 * DES_KEY_SIZE)

    def significant_bytes(self) -> bytes:
        return self.window(0, self.length)


class PasswordKind(Enum):
    """How a trust password is held."""

    PLAINTEXT = auto()  # UTF-16LE encoded
    OWF = auto()  # already the 16-byte NT hash


@attrs.define(eq=False, repr=False)
class TrustPassword(SecretBytes):
    """
    Machine trust-account secret.

    Plaintext is stored UTF-16LE encoded so the NT hash can be taken over the
    buffer directly. After a rotation the retained secret is an OWF blob.
    """

    kind: PasswordKind = field(default=PasswordKind.PLAINTEXT)

    @classmethod
    def from_plaintext(cls, password: str) -> TrustPassword:
        return cls(password.encode("utf-16-le"), kind=PasswordKind.PLAINTEXT)

    @classmethod
    def from_owf(cls, owf: bytes) -> TrustPassword:
        if len(owf) != OwfPassword.SIZE:
            raise ValueError(f"OWF password must be {OwfPassword.SIZE} bytes")
        return cls(owf, kind=PasswordKind.OWF)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0
