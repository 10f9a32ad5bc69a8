"""Redaction of credentials and local paths in user-facing errors."""

from __future__ import annotations

import os
import re

_SECRET_PATTERNS = [
    # Stripe secret keys and webhook secrets
    (re.compile(r"\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]+"), "[REDACTED_KEY]"),
    (re.compile(r"\bwhsec_[A-Za-z0-9]+"), "[REDACTED_KEY]"),
    # Resend API keys
    (re.compile(r"\bre_[A-Za-z0-9_]{16,}"), "[REDACTED_KEY]"),
    (re.compile(r"Bearer\s+\S+"), "Bearer [REDACTED]"),
    (re.compile(r"Authorization:\s*\S+", re.IGNORECASE), "Authorization: [REDACTED]"),
]


def sanitize_error(message: str, secrets: tuple[str, ...] = ()) -> str:
    """Remove API keys, explicit secrets and the home directory from a message."""
    if not message:
        return message

    sanitized = message
    for secret in secrets:
        if secret:
            sanitized = sanitized.replace(secret, "[REDACTED]")
    for pattern, replacement in _SECRET_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)

    home = os.environ.get("USERPROFILE") or os.environ.get("HOME") or ""
    if home and home != "/":
        sanitized = sanitized.replace(home, "[USER_HOME]")

    return sanitized
