"""
Client challenge generation.

Windows DCs reject a ClientChallenge or ClientStoredCredential when none of
its first five bytes is unique (MS-NRPC 3.1.4.1 step 7, 3.1.4.6 step 6).
The check exists because AES-CFB8 maps an all-zero block to itself under
1 in 256 keys. Win2012r2 only rejects values whose first five bytes are zero;
the stricter rule below satisfies both.
"""

from __future__ import annotations

from typing import Callable

import structlog

from netrauth.core.crypto import secure_random_bytes
from netrauth.core.exceptions import MitigationExhausted
from netrauth.core.types import CREDENTIAL_SIZE, NetrCredential

logger = structlog.get_logger()

MITIGATION_PREFIX = 5

# A random value fails the check with probability well under 1e-5, so this
# bound is never reached with a working random source.
MAX_CHALLENGE_ATTEMPTS = 64


def passes_dc_mitigation(data: bytes) -> bool:
    """
    True if at least one of the first five bytes appears exactly once among them.

    >>> passes_dc_mitigation(bytes(8))
    False
    >>> passes_dc_mitigation(b"\\x01\\x01\\x02\\x02\\x03" + bytes(3))
    True
    """
    if len(data) < MITIGATION_PREFIX:
        raise ValueError(f"need at least {MITIGATION_PREFIX} bytes, got {len(data)}")

    prefix = data[:MITIGATION_PREFIX]
    return any(prefix.count(b) == 1 for b in prefix)


def generate_client_challenge(
    random_source: Callable[[int], bytes] = secure_random_bytes,
    max_attempts: int = MAX_CHALLENGE_ATTEMPTS,
) -> NetrCredential:
    """
    Draw an 8-byte client challenge that passes the DC mitigation check.

    Args:
        random_source: CSPRNG returning the requested number of bytes
        max_attempts: Upper bound on draws

    Raises:
        MitigationExhausted: No passing value within ``max_attempts`` draws
    """
    for attempt in range(1, max_attempts + 1):
        candidate = random_source(CREDENTIAL_SIZE)
        if passes_dc_mitigation(candidate):
            if attempt > 1:
                logger.debug("client_challenge_regenerated", attempts=attempt)
            return NetrCredential(bytes(candidate))

    logger.error("client_challenge_exhausted", attempts=max_attempts)
    raise MitigationExhausted(
        f"no client challenge passed the uniqueness check in {max_attempts} attempts"
    )
