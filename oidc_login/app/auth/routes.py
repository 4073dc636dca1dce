"""
Authentication routes for OIDC login and callback handling.

This module exposes the OAuth 2.0 / OIDC authorization code flow of the
``OidcClient`` stored on ``app.state.oidc_client``. Routes live under the
state cookie path so the cookie reaches the callback and nothing else.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from .client import OidcClient


logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/api/auth",
    tags=["authentication"],
)


def get_oidc_client(request: Request) -> OidcClient:
    """Return the client configured at startup, or 503 while there is none."""
    client = getattr(request.app.state, "oidc_client", None)
    if client is None:
        logger.error("OIDC client requested before it was configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is not configured",
        )
    return client


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login", response_class=RedirectResponse)
async def login(
    request: Request,
    token: Optional[str] = Query(None, description="Raw ID token (developer login only)"),
):
    """
    Initiate OIDC login flow by redirecting to the Identity Provider.

    This endpoint:
    1. Generates a fresh state value
    2. Sets it as a Secure, HttpOnly cookie scoped to /api/auth
    3. Redirects to the IdP authorization endpoint, or to the callback when
       a developer token is supplied and allowed

    Returns:
        302 redirect, 403 when developer login is disabled, 500 when no
        state could be generated
    """
    return await get_oidc_client(request).begin_login(request)


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback", response_class=RedirectResponse)
async def callback(
    request: Request,
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    code: Optional[str] = Query(None, description="Authorization code from the IdP"),
    token: Optional[str] = Query(None, description="Raw ID token (developer login only)"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
):
    """
    Handle the redirect back from the Identity Provider.

    This endpoint:
    1. Validates the state parameter against the state cookie
    2. Exchanges the authorization code for tokens (or takes the developer token)
    3. Verifies the ID token signature and claims
    4. Runs the application's completion hook
    5. Redirects to the frontend

    Returns:
        302 to the frontend (optionally with ?missingcsc=1 / ?missingorg=1),
        400 for a missing or mismatched state, 403 for a disabled developer
        login, 500 for exchange, verification or hook failures
    """
    return await get_oidc_client(request).complete_login(request)
