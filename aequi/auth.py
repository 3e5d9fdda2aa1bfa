"""Bearer-token checks for the HTTP API."""

from __future__ import annotations

import hmac

_BEARER_PREFIX = "Bearer "


def constant_time_eq(a: str, b: str) -> bool:
    """Compare two strings without leaking where they differ."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer`` value, if present."""
    if authorization is None or not authorization.startswith(_BEARER_PREFIX):
        return None
    return authorization[len(_BEARER_PREFIX):]


def is_authorized(authorization: str | None, api_key: str | None) -> bool:
    """Decide whether a request with this header may proceed.

    With no key configured every request is allowed.
    """
    if api_key is None:
        return True
    token = extract_bearer_token(authorization)
    if token is None:
        return False
    return constant_time_eq(token, api_key)