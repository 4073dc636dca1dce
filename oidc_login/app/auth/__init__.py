"""
Authentication Package

This package implements a server-side OpenID Connect (OIDC) Authorization
Code login flow.

Key responsibilities:
- Starting a login with a CSRF state cookie and redirecting to the IdP
- Checking the state on callback before any token work
- Exchanging the authorization code and verifying the ID token (JWKS)
- Handing the verified identity to the application's completion hook

Modules:
- routes: Public authentication endpoints (/api/auth/login, /api/auth/callback)
- client: The login state machine (OidcClient)
- provider: OIDC discovery, code exchange, JWKS fetching and ID token verification
- state: State value generation/validation and the state cookie
- hooks: Completion hook contract (LoginResult, ProfileIssue)
- errors: Login failure taxonomy

The authentication flow:
1. Browser hits /api/auth/login and gets a state cookie
2. User authenticates with the IdP
3. IdP redirects to /api/auth/callback with code and state
4. The client validates state, exchanges code, verifies the ID token
5. Completion hook resolves the user; browser is sent to the frontend
"""

from .client import OidcClient, create_oidc_client
from .errors import DiscoveryError, LoginError
from .hooks import LoginHook, LoginResult, ProfileIssue
from .provider import IdentityProvider, OidcProvider
from .routes import auth_router

__all__ = [
    "auth_router",
    "OidcClient",
    "create_oidc_client",
    "IdentityProvider",
    "OidcProvider",
    "LoginHook",
    "LoginResult",
    "ProfileIssue",
    "DiscoveryError",
    "LoginError",
]
