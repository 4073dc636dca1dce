"""
Login flow exceptions.

Every failure of the login round trip is raised as a ``LoginError`` subclass
carrying the HTTP status and the public message sent to the browser. The
route handlers convert them to exactly one plain-text response.
"""

from typing import Optional

from fastapi import status


class DiscoveryError(Exception):
    """OIDC discovery failed; the client cannot be constructed."""


class LoginError(Exception):
    """Base exception for a failed login request."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "login failed"

    def __init__(self, detail: str = "", subject: Optional[str] = None):
        super().__init__(detail or self.message)
        self.detail = detail or self.message
        self.subject = subject


class StateGenerationError(LoginError):
    message = "can't create state parameter"


class SessionExpiredError(LoginError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "login session expired"


class StateMismatchError(LoginError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "state did not match"


class DevLoginDisabledError(LoginError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "access denied"


class TokenExchangeError(LoginError):
    message = "failed to exchange code for token"


class MissingIDTokenError(LoginError):
    message = "IdP did not send an id token"


class TokenVerificationError(LoginError):
    message = "id token verification failed"


class LoginHookError(LoginError):
    message = "Login failed"


class RequestAbandonedError(LoginError):
    # nginx convention for "client closed request"
    status_code = 499
    message = "client closed request"


__all__ = [
    "DiscoveryError",
    "LoginError",
    "StateGenerationError",
    "SessionExpiredError",
    "StateMismatchError",
    "DevLoginDisabledError",
    "TokenExchangeError",
    "MissingIDTokenError",
    "TokenVerificationError",
    "LoginHookError",
    "RequestAbandonedError",
]
