"""
Login completion hook contract.

After the ID token verified, the client hands the token material to an
application-supplied coroutine which resolves or creates the user account and
reports how the login ended:

    async def on_login(request, response, token, identity) -> LoginResult:
        user = await users.upsert(identity.subject, identity.claims)
        if not user.organization:
            return LoginResult.incomplete(ProfileIssue.MISSING_ORGANIZATION)
        response.set_cookie("session", await sessions.issue(user), secure=True, httponly=True)
        return LoginResult.success()

``token`` is None for developer token logins. Cookies set on ``response`` are
copied onto the final redirect.
"""

from enum import Enum
from typing import Awaitable, Callable, Literal, Optional

from fastapi import Request, Response
from pydantic import BaseModel, ConfigDict, model_validator

from ..models import OAuth2Token, VerifiedIdentity


class ProfileIssue(str, Enum):
    """Recoverable account problems; the value is the frontend query marker."""

    MISSING_USER_ID = "missingcsc"
    MISSING_ORGANIZATION = "missingorg"


class LoginResult(BaseModel):
    """Outcome of the completion hook: success, incomplete profile, or failure."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["success", "incomplete", "failure"]
    issue: Optional[ProfileIssue] = None
    detail: Optional[str] = None

    @model_validator(mode="after")
    def check_kind_fields(self) -> "LoginResult":
        """An issue belongs to exactly the incomplete kind; a failure needs a detail."""
        if (self.kind == "incomplete") != (self.issue is not None):
            raise ValueError("issue must be set for incomplete results and only for them")
        if self.kind == "failure" and self.detail is None:
            raise ValueError("failure results need a detail")
        return self

    @classmethod
    def success(cls) -> "LoginResult":
        return cls(kind="success")

    @classmethod
    def incomplete(cls, issue: ProfileIssue) -> "LoginResult":
        return cls(kind="incomplete", issue=issue)

    @classmethod
    def failure(cls, detail: str) -> "LoginResult":
        return cls(kind="failure", detail=detail)


LoginHook = Callable[
    [Request, Response, Optional[OAuth2Token], VerifiedIdentity],
    Awaitable[LoginResult],
]


__all__ = ["LoginHook", "LoginResult", "ProfileIssue"]
