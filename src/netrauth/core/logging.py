"""
structlog configuration for netrauth.

Library code only calls ``structlog.get_logger()``; applications that want
the netrauth processor chain call ``configure_logging`` once at startup.
"""

from __future__ import annotations

from typing import Any, MutableMapping

import structlog

REDACTED = "<redacted>"

# Event keys whose values must never reach a log sink.
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "trust_password",
        "new_password",
        "owf_password",
        "nt_hash",
        "password_hash",
        "session_key",
        "credential",
        "client_credential",
        "server_credential",
    }
)


def scrub_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor replacing sensitive values with a marker."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def configure_logging(json: bool = False, **overrides: Any) -> None:
    """
    Install the netrauth processor chain.

    Args:
        json: Render events as JSON lines instead of console output
        overrides: Extra keyword arguments passed to ``structlog.configure``
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            scrub_secrets,
            renderer,
        ],
        **overrides,
    )
