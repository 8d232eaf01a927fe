"""Security primitives: tokens, password hashing, input checks, headers.

Stateless helpers shared by the request pipeline (`core.middleware`,
`core.deps`) and the user / session services.
"""

from __future__ import annotations

import hmac
import re
import secrets
from typing import Any, Dict, List, Optional

import bcrypt

CSRF_TOKEN_BYTES = 32
SESSION_TOKEN_BYTES = 32

SECURITY_HEADERS: Dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
}

CSP_DIRECTIVES: Dict[str, List[str]] = {
    "default-src": ["'self'"],
    "script-src": ["'self'", "'unsafe-inline'"],
    "style-src": ["'self'", "'unsafe-inline'", "https://fonts.googleapis.com"],
    "font-src": ["'self'", "https://fonts.gstatic.com"],
    "img-src": ["'self'", "data:", "https:"],
    "connect-src": ["'self'"],
    "frame-ancestors": ["'none'"],
    "base-uri": ["'self'"],
    "form-action": ["'self'"],
}

_HTML_ESCAPES = (
    ("&", "&amp;"),  # must run first
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
    ("/", "&#x2F;"),
)

_STRONG_PASSWORD_RE = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$"
)
_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]{3,20}$")
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

PASSWORD_RULES = (
    "Password must be at least 8 characters and contain upper and lower case "
    "letters, a digit and one of @$!%*?&"
)


def generate_token(num_bytes: int = CSRF_TOKEN_BYTES) -> str:
    return secrets.token_hex(num_bytes)


def generate_session_token() -> str:
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def tokens_match(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time, case-sensitive comparison; empty values never match."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def hash_password(password: str, rounds: int = 12) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash or over-long password
        return False


def sanitize_input(value: Any) -> Any:
    """Trim and HTML-entity-encode a string; other values pass through."""
    if not isinstance(value, str):
        return value
    sanitized = value.strip()
    for raw, escaped in _HTML_ESCAPES:
        sanitized = sanitized.replace(raw, escaped)
    return sanitized


def sanitize_data(value: Any, skip_keys: frozenset = frozenset()) -> Any:
    """Recursively sanitize every string leaf of a JSON-like structure.

    Keys listed in `skip_keys` keep their raw value (secrets such as passwords
    are never rendered and must reach the hash function untouched).
    """
    if isinstance(value, dict):
        return {
            key: item if key in skip_keys else sanitize_data(item, skip_keys)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [sanitize_data(item, skip_keys) for item in value]
    return sanitize_input(value)


def build_csp(nonce: Optional[str] = None) -> str:
    directives = dict(CSP_DIRECTIVES)
    if nonce:
        directives["script-src"] = [f"'nonce-{nonce}'", "'strict-dynamic'"]
    return "; ".join(f"{name} {' '.join(values)}" for name, values in directives.items())


def security_headers() -> Dict[str, str]:
    headers = dict(SECURITY_HEADERS)
    headers["Content-Security-Policy"] = build_csp()
    return headers


def is_strong_password(password: str) -> bool:
    return bool(_STRONG_PASSWORD_RE.match(password or ""))


def is_valid_username(username: str) -> bool:
    return bool(_USERNAME_RE.match(username or ""))


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def mask_sensitive(data: str, visible_chars: int = 4) -> str:
    if not isinstance(data, str):
        return ""
    if len(data) <= visible_chars * 2:
        return "*" * len(data)
    hidden = "*" * (len(data) - visible_chars * 2)
    return f"{data[:visible_chars]}{hidden}{data[-visible_chars:]}"
