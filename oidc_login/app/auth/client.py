"""
OIDC client implementing the Authorization Code login round trip.

``begin_login`` sends the browser to the IdP with a fresh CSRF state bound to
a cookie; ``complete_login`` checks that state, obtains and verifies the ID
token and hands the identity to the application's completion hook.

The client is built once (``create_oidc_client`` runs discovery) and is
read-only afterwards, so it can serve concurrent requests without locking.
"""

import asyncio
import json
import logging
import time
from typing import Awaitable, Callable, Optional, Type, TypeVar
from urllib.parse import urlencode

import httpx
from fastapi import Request, Response
from fastapi.responses import PlainTextResponse, RedirectResponse

from ..models import OAuth2Token, OidcClientConfig, VerifiedIdentity
from .errors import (
    DevLoginDisabledError,
    LoginError,
    LoginHookError,
    MissingIDTokenError,
    RequestAbandonedError,
    SessionExpiredError,
    StateGenerationError,
    StateMismatchError,
    TokenExchangeError,
    TokenVerificationError,
)
from .hooks import LoginHook, LoginResult
from .provider import IdentityProvider, OidcProvider
from .state import (
    clear_state_cookie,
    new_login_state,
    set_state_cookie,
    state_is_fresh,
    states_match,
)


module_logger = logging.getLogger(__name__)

# How often an in-flight IdP call checks whether the browser went away
DISCONNECT_POLL_SECONDS = 0.25

T = TypeVar("T")


def error_response(error: LoginError) -> Response:
    """Plain-text response carrying only the public message of ``error``."""
    return PlainTextResponse(error.message, status_code=error.status_code)


class OidcClient:
    """
    OpenID Connect client for one authentication provider.

    Args:
        config: Client registration and login transaction settings
        provider: Discovered IdP gateway (or a fake in tests)
        on_login: Completion hook; when None every verified login succeeds
        logger: Logger to use; defaults to this module's logger
        clock: Returns the current Unix time; used for state issue/expiry
    """

    def __init__(
        self,
        config: OidcClientConfig,
        provider: IdentityProvider,
        on_login: Optional[LoginHook] = None,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._config = config
        self._provider = provider
        self._on_login = on_login
        self._logger = logger or module_logger
        self._clock = clock or time.time
        self._secret = config.client_secret.get_secret_value()

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> OidcClientConfig:
        return self._config

    def authorization_url(self, state: str, nonce: str = "") -> str:
        """IdP authorization endpoint URL for ``state`` and the pass-through nonce."""
        params = {
            "client_id": self._config.client_id,
            "redirect_uri": self._config.redirect_url,
            "response_type": "code",
            "scope": " ".join(self._config.scopes),
            "state": state,
        }
        if nonce:
            params["nonce"] = nonce

        endpoint = self._provider.metadata.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    # =========================================================================
    # Login
    # =========================================================================

    async def begin_login(self, request: Request) -> Response:
        """
        Start a login attempt: set the state cookie and redirect to the IdP.

        With ``?token=<raw ID token>`` and developer login enabled the browser
        is sent straight to our callback instead.
        """
        # the raw query string is forwarded to the IdP as an opaque nonce
        nonce = request.url.query
        now = self._clock()

        try:
            state = new_login_state(self._secret, now)
        except StateGenerationError as e:
            self._logger.error(f"can't create state parameter: {e.detail}", extra={"provider": self.name})
            return error_response(e)

        raw_id_token = request.query_params.get("token")
        if raw_id_token:
            if not self._config.allow_dev_login:
                self._logger.debug("dev token login not allowed", extra={"provider": self.name})
                return error_response(DevLoginDisabledError())

            self._logger.debug(
                "logging in with dev token, redirect to callback",
                extra={"provider": self.name, "state": state, "with_nonce": bool(nonce)},
            )
            query = urlencode({"token": raw_id_token, "state": state})
            separator = "&" if "?" in self._config.redirect_url else "?"
            location = f"{self._config.redirect_url}{separator}{query}"
        else:
            self._logger.debug(
                "redirect to IdP",
                extra={"provider": self.name, "state": state, "with_nonce": bool(nonce)},
            )
            location = self.authorization_url(state, nonce)

        response = RedirectResponse(url=location, status_code=302)
        set_state_cookie(response, self._config, state, now)
        return response

    # =========================================================================
    # Callback
    # =========================================================================

    async def complete_login(self, request: Request) -> Response:
        """
        Handle the IdP callback.

        Steps run strictly in order and the first failure ends the request:
        state cookie present, state matches and is fresh, token obtained,
        ID token verified, completion hook. The state cookie is cleared on
        every outcome so a callback cannot be replayed.
        """
        cookie = request.cookies.get(self._config.cookie_name)
        if not cookie:
            self._logger.debug("no state cookie", extra={"provider": self.name})
            return error_response(SessionExpiredError())

        try:
            response = await self._complete_login(request, cookie)
        except LoginError as e:
            self._log_failure(e, request.query_params.get("state"))
            response = error_response(e)

        clear_state_cookie(response, self._config)
        return response

    async def _complete_login(self, request: Request, cookie: str) -> Response:
        params = request.query_params
        state = params.get("state")

        if not states_match(state, cookie):
            raise StateMismatchError(f"state did not match (param={state!r}, cookie={cookie!r})")
        if not state_is_fresh(cookie, self._secret, self._clock(), self._config.login_timeout):
            raise StateMismatchError("state expired or was not issued by this client")

        token: Optional[OAuth2Token] = None
        raw_id_token = params.get("token")
        if raw_id_token:
            # login with custom ID token, there is no OAuth2 token
            if not self._config.allow_dev_login:
                raise DevLoginDisabledError("dev token login not allowed")
        else:
            token = await self._exchange_code(request)
            if not token.id_token:
                raise MissingIDTokenError("id_token missing from IdP response")
            raw_id_token = token.id_token

        identity = await self._call_idp(
            request,
            self._provider.verify_id_token(raw_id_token),
            TokenVerificationError,
        )
        self._logger.info("login", extra={"provider": self.name, "sub": identity.subject})

        # don't build the response before the hook; it may set cookies
        hook_response = Response()
        result = await self._run_hook(request, hook_response, token, identity)

        location = self._config.frontend_url
        if result.kind == "incomplete":
            self._logger.info(
                f"login incomplete: {result.issue.name}",
                extra={"provider": self.name, "sub": identity.subject},
            )
            location = f"{location}?{result.issue.value}=1"

        response = RedirectResponse(url=location, status_code=302)
        for value in hook_response.headers.getlist("set-cookie"):
            response.headers.append("set-cookie", value)
        return response

    async def _exchange_code(self, request: Request) -> OAuth2Token:
        params = request.query_params

        error = params.get("error")
        if error:
            description = params.get("error_description", "")
            raise TokenExchangeError(f"IdP returned error {error}: {description}")

        code = params.get("code")
        if not code:
            raise TokenExchangeError("missing authorization code")

        return await self._call_idp(request, self._provider.exchange_code(code), TokenExchangeError)

    async def _run_hook(
        self,
        request: Request,
        response: Response,
        token: Optional[OAuth2Token],
        identity: VerifiedIdentity,
    ) -> LoginResult:
        if self._on_login is None:
            return LoginResult.success()

        try:
            result = await self._on_login(request, response, token, identity)
        except Exception as e:
            raise LoginHookError(f"OnLogin callback failed: {e}", subject=identity.subject) from e

        if not isinstance(result, LoginResult):
            raise LoginHookError(
                f"OnLogin callback returned {type(result).__name__}, not LoginResult",
                subject=identity.subject,
            )
        if result.kind == "failure":
            raise LoginHookError(f"OnLogin callback failed: {result.detail}", subject=identity.subject)
        return result

    async def _call_idp(
        self,
        request: Request,
        awaitable: Awaitable[T],
        failure: Type[LoginError],
    ) -> T:
        """
        Await an IdP call under the per-call deadline.

        The call is cancelled if the deadline passes (raising ``failure``) or
        the browser disconnects (raising ``RequestAbandonedError``).
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.idp_timeout
        task = asyncio.ensure_future(awaitable)

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise failure(f"IdP did not answer within {self._config.idp_timeout} seconds")

                done, _ = await asyncio.wait({task}, timeout=min(remaining, DISCONNECT_POLL_SECONDS))
                if done:
                    return task.result()

                if await request.is_disconnected():
                    raise RequestAbandonedError("browser disconnected during IdP call")
        finally:
            if not task.done():
                task.cancel()

    def _log_failure(self, error: LoginError, state: Optional[str]) -> None:
        extra = {
            "provider": self.name,
            "state": state,
            "sub": error.subject,
            "error_type": type(error).__name__,
        }
        if error.status_code >= 500:
            self._logger.error(error.detail, extra=extra, exc_info=isinstance(error, LoginHookError))
        else:
            self._logger.info(error.detail, extra=extra)

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def dump_token(self, token: Optional[OAuth2Token], identity: VerifiedIdentity) -> Response:
        """
        Render the token bundle and ID token claims as indented JSON.

        For debugging only; never called by the login flow. Access and
        refresh tokens are replaced with ``***``.
        """
        out = {
            "OAuth2Token": token.redacted() if token is not None else None,
            "IDTokenClaims": identity.claims,
        }
        data = json.dumps(out, indent=4, default=str)
        return Response(content=data, media_type="application/json")


async def create_oidc_client(
    config: OidcClientConfig,
    on_login: Optional[LoginHook] = None,
    logger: Optional[logging.Logger] = None,
    clock: Optional[Callable[[], float]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> OidcClient:
    """
    Run OIDC discovery for ``config`` and return a ready client.

    Raises:
        DiscoveryError: If discovery fails; there is no retry
    """
    provider = await OidcProvider.discover(config, transport=transport)
    return OidcClient(config, provider, on_login=on_login, logger=logger, clock=clock)


__all__ = ["OidcClient", "create_oidc_client", "error_response"]
