"""
Login State Module
==================

Creates and checks the CSRF ``state`` value of a login attempt and manages
the cookie that carries it.

A state value looks like ``<random>.<issued_at>.<mac>``:
- ``random``: 16 bytes from ``secrets``, base64url without padding
- ``issued_at``: Unix time (seconds) the login started
- ``mac``: truncated HMAC-SHA256 of the first two parts, keyed with the
  client secret, so the issue time cannot be rewritten by the browser

Nothing is stored server side. The value is compared with the ``state``
query parameter echoed by the IdP and rejected once older than the login
timeout.
"""

import base64
import hashlib
import hmac
import secrets
from datetime import datetime, timezone
from typing import Optional

from fastapi import Response

from ..models import OidcClientConfig
from .errors import StateGenerationError


STATE_RANDOM_BYTES = 16
MAC_BYTES = 16


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _mac(secret: str, payload: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return _b64(digest[:MAC_BYTES])


def new_login_state(secret: str, now: float) -> str:
    """
    Generate a fresh state value issued at ``now``.

    Raises:
        StateGenerationError: If the OS random source is unavailable
    """
    try:
        key = secrets.token_bytes(STATE_RANDOM_BYTES)
    except (OSError, NotImplementedError) as e:
        raise StateGenerationError(f"random source unavailable: {e}") from e

    payload = f"{_b64(key)}.{int(now)}"
    return f"{payload}.{_mac(secret, payload)}"


def states_match(param: Optional[str], cookie: str) -> bool:
    """Constant-time, whole-value comparison of the echoed state and the cookie."""
    if param is None:
        return False
    return hmac.compare_digest(param.encode("utf-8"), cookie.encode("utf-8"))


def state_is_fresh(state: str, secret: str, now: float, timeout: int) -> bool:
    """
    Check that ``state`` was issued by us and is not older than ``timeout``.

    Malformed values, values with a bad MAC and values issued in the future
    are not fresh.
    """
    parts = state.split(".")
    if len(parts) != 3:
        return False

    random_part, issued, mac = parts
    expected = _mac(secret, f"{random_part}.{issued}")
    if not hmac.compare_digest(mac.encode("utf-8"), expected.encode("utf-8")):
        return False

    try:
        issued_at = int(issued)
    except ValueError:
        return False

    age = int(now) - issued_at
    return 0 <= age <= timeout


# =============================================================================
# Cookie Helpers
# =============================================================================

def set_state_cookie(response: Response, config: OidcClientConfig, state: str, now: float) -> None:
    """Attach the state cookie, with both Max-Age and an absolute Expires."""
    response.set_cookie(
        key=config.cookie_name,
        value=state,
        max_age=config.login_timeout,
        # old browsers don't understand Max-Age
        expires=datetime.fromtimestamp(now + config.login_timeout, tz=timezone.utc),
        path=config.cookie_path,
        secure=True,
        httponly=True,
    )


def clear_state_cookie(response: Response, config: OidcClientConfig) -> None:
    response.delete_cookie(
        key=config.cookie_name,
        path=config.cookie_path,
        secure=True,
        httponly=True,
    )


__all__ = [
    "new_login_state",
    "states_match",
    "state_is_fresh",
    "set_state_cookie",
    "clear_state_cookie",
]
