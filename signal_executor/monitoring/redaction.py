"""
Log redaction helpers.

Designed for structlog processors: any event field whose name looks like a
credential is masked, at any nesting depth.
"""

from __future__ import annotations

from typing import Any

SENSITIVE_KEY_FRAGMENTS = (
    "passphrase",
    "secret",
    "password",
    "private_key",
    "privatekey",
    "api_key",
    "apikey",
    "mnemonic",
    "token",
    "authorization",
    "signature",
)

REDACTED = "***REDACTED***"


def _is_sensitive_key(key: Any) -> bool:
    k = str(key).lower()
    return any(frag in k for frag in SENSITIVE_KEY_FRAGMENTS)


def redact(obj: Any) -> Any:
    """
    Recursively redact dict keys that look sensitive.
    """
    if isinstance(obj, dict):
        return {k: (REDACTED if _is_sensitive_key(k) else redact(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(v) for v in obj]
    return obj


def structlog_redaction_processor(_logger: Any, _method_name: str, event_dict: dict) -> dict:
    """
    Structlog processor: redact sensitive fields from event_dict.
    """
    return redact(event_dict)
