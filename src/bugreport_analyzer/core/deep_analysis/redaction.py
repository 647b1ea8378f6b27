"""Redaction of personal data and secrets before a bugreport leaves the machine."""

from __future__ import annotations

import re

_EMAIL_RE = re.compile(r"(?i)\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b")
_IPV4_RE = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")
# Full form needs a hex letter, compressed form a digit: keeps 12:34:56 and C++ scopes.
_IPV6_RE = re.compile(
    r"\b(?=[0-9a-fA-F:]*[a-fA-F])(?:[0-9a-fA-F]{1,4}:){2,7}[0-9a-fA-F]{1,4}\b"
    r"|\b(?=[0-9a-fA-F:]*\d)(?:[0-9a-fA-F]{1,4}:)+:(?:[0-9a-fA-F]{1,4}:?)*\b"
)
_JWT_RE = re.compile(r"\beyJ[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]{10,}\b")
_LONG_TOKEN_RE = re.compile(r"\b[a-zA-Z0-9_\-]{32,}\b")
# Build ids and fault addresses are evidence, not secrets.
_HEX_ONLY_RE = re.compile(r"^[0-9a-fA-F]+$")


def _token(m: re.Match[str]) -> str:
    value = m.group(0)
    return value if _HEX_ONLY_RE.match(value) else "<REDACTED_TOKEN>"


def redact_text(text: str) -> str:
    """Mask emails, IP addresses, JWTs and long opaque tokens."""
    text = _JWT_RE.sub("<REDACTED_JWT>", text)
    text = _EMAIL_RE.sub("<REDACTED_EMAIL>", text)
    text = _IPV4_RE.sub("<REDACTED_IP>", text)
    text = _IPV6_RE.sub("<REDACTED_IP>", text)
    text = _LONG_TOKEN_RE.sub(_token, text)
    return text
