"""
OpenID Provider gateway: discovery, code exchange and ID token verification.

This module handles:
- Fetching the discovery document of an issuer
- Exchanging an authorization code at the token endpoint
- Fetching and caching the IdP JWKS (JSON Web Key Set)
- Verifying ID token signatures and claims
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Protocol

import httpx
from jose import JWTError, jwk, jwt
from jose.exceptions import JOSEError

from ..models import OAuth2Token, OidcClientConfig, ProviderMetadata, VerifiedIdentity
from .errors import DiscoveryError, TokenExchangeError, TokenVerificationError


logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"

# Signing algorithms accepted for ID tokens
ASYMMETRIC_ALGORITHMS = frozenset({
    "RS256", "RS384", "RS512",
    "ES256", "ES384", "ES512",
    "PS256", "PS384", "PS512",
})


class IdentityProvider(Protocol):
    """The two IdP capabilities the login flow depends on."""

    metadata: ProviderMetadata

    async def exchange_code(self, code: str) -> OAuth2Token:
        ...

    async def verify_id_token(self, raw_id_token: str) -> VerifiedIdentity:
        ...


# =============================================================================
# Discovery
# =============================================================================

async def fetch_provider_metadata(
    issuer_url: str,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderMetadata:
    """
    Fetch and validate the discovery document for ``issuer_url``.

    Raises:
        DiscoveryError: If the document is unreachable, malformed, or
            advertises a different issuer than the one requested
    """
    url = issuer_url.rstrip("/") + DISCOVERY_PATH

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url)
            response.raise_for_status()
            metadata = ProviderMetadata.model_validate(response.json())
    except (httpx.HTTPError, ValueError) as e:
        raise DiscoveryError(f"OIDC discovery failed for {issuer_url}: {e}") from e

    if metadata.issuer.rstrip("/") != issuer_url.rstrip("/"):
        raise DiscoveryError(
            f"Issuer mismatch: expected {issuer_url}, discovery document says {metadata.issuer}"
        )

    return metadata


def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Extract the public key from JWKS that matches the token's kid.

    A token without a kid is accepted only when the JWKS holds a single key.

    Raises:
        JWTError: If token header is malformed
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise JWTError(f"Failed to decode token header: {e}")

    keys = jwks.get("keys", [])
    kid = unverified_header.get("kid")
    if not kid:
        if len(keys) == 1:
            return keys[0]
        raise JWTError("Token header missing 'kid' (Key ID)")

    for key in keys:
        if key.get("kid") == kid:
            return key

    return None


# =============================================================================
# Provider
# =============================================================================

class OidcProvider:
    """
    Gateway to a discovered OpenID Provider for one client registration.

    Instances are shared by all requests. The only mutable state is the JWKS
    cache, which is guarded by an ``asyncio.Lock``.
    """

    def __init__(
        self,
        metadata: ProviderMetadata,
        config: OidcClientConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.metadata = metadata
        self._config = config
        self._transport = transport
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_time = 0.0
        self._jwks_lock = asyncio.Lock()

        supported = [
            alg for alg in metadata.id_token_signing_alg_values_supported
            if alg in ASYMMETRIC_ALGORITHMS
        ]
        self._algorithms: List[str] = supported or ["RS256"]

    @classmethod
    async def discover(
        cls,
        config: OidcClientConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "OidcProvider":
        """Run discovery for ``config.provider_url`` and return a provider."""
        metadata = await fetch_provider_metadata(
            config.provider_url,
            timeout=config.idp_timeout,
            transport=transport,
        )
        logger.info(
            f"Discovered OIDC provider {config.name}",
            extra={"issuer": metadata.issuer, "algorithms": metadata.id_token_signing_alg_values_supported},
        )
        return cls(metadata, config, transport=transport)

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._config.idp_timeout, transport=self._transport)

    # -------------------------------------------------------------------------
    # Code exchange
    # -------------------------------------------------------------------------

    async def exchange_code(self, code: str) -> OAuth2Token:
        """
        Exchange an authorization code for tokens.

        Raises:
            TokenExchangeError: If the token endpoint is unreachable or rejects
                the code (including a reused code)
        """
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._config.redirect_url,
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret.get_secret_value(),
        }

        try:
            async with self._http_client() as client:
                response = await client.post(
                    self.metadata.token_endpoint,
                    data=payload,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Token endpoint unreachable: {e}") from e

        if not response.is_success:
            error_data = {}
            if response.headers.get("content-type", "").startswith("application/json"):
                try:
                    error_data = response.json()
                except ValueError:
                    error_data = {}
            error_msg = (
                error_data.get("error_description")
                or error_data.get("error")
                or f"HTTP {response.status_code}"
            )
            raise TokenExchangeError(f"Token exchange failed: {error_msg}")

        try:
            token_data = response.json()
        except ValueError as e:
            raise TokenExchangeError(f"Token response is not JSON: {e}") from e

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise TokenExchangeError("Token response missing access_token")

        return OAuth2Token.from_token_response(token_data)

    # -------------------------------------------------------------------------
    # JWKS
    # -------------------------------------------------------------------------

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the IdP JWKS with caching.

        Results are cached for ``jwks_cache_seconds``.

        Raises:
            httpx.HTTPError: If JWKS endpoint is unreachable
            ValueError: If response is invalid
        """
        async with self._jwks_lock:
            current_time = time.monotonic()
            cache_age = current_time - self._jwks_time
            if not force_refresh and self._jwks is not None and cache_age < self._config.jwks_cache_seconds:
                return self._jwks

            async with self._http_client() as client:
                response = await client.get(self.metadata.jwks_uri)
                response.raise_for_status()
                jwks_data = response.json()

            if not isinstance(jwks_data, dict) or "keys" not in jwks_data:
                raise ValueError("Invalid JWKS response: missing 'keys' field")

            self._jwks = jwks_data
            self._jwks_time = current_time
            logger.debug(f"Fetched JWKS with {len(jwks_data['keys'])} keys")
            return jwks_data

    # -------------------------------------------------------------------------
    # ID token verification
    # -------------------------------------------------------------------------

    async def verify_id_token(self, raw_id_token: str) -> VerifiedIdentity:
        """
        Verify an ID token and return the identity it asserts.

        Checks the signature against the IdP JWKS, the issuer, the audience
        (our client ID) and, unless ``skip_expiry_check`` is set, the expiry.

        Raises:
            TokenVerificationError: If any check fails or the keys cannot
                be fetched
        """
        try:
            claims = await self._decode(raw_id_token)
            return VerifiedIdentity.from_claims(claims)
        except (JOSEError, httpx.HTTPError, ValueError, TypeError, OverflowError, OSError) as e:
            raise TokenVerificationError(str(e)) from e

    async def _decode(self, raw_id_token: str) -> Dict[str, Any]:
        algorithm = jwt.get_unverified_header(raw_id_token).get("alg")
        if algorithm not in self._algorithms:
            raise JWTError(f"Unexpected signing algorithm: {algorithm}")

        jwks = await self.fetch_jwks()
        signing_key = get_signing_key(raw_id_token, jwks)
        if not signing_key:
            # Try refreshing JWKS in case keys were rotated
            jwks = await self.fetch_jwks(force_refresh=True)
            signing_key = get_signing_key(raw_id_token, jwks)

            if not signing_key:
                raise JWTError("Unable to find matching signing key in JWKS")

        public_key = jwk.construct(signing_key, algorithm=algorithm)
        check_expiry = not self._config.skip_expiry_check

        return jwt.decode(
            raw_id_token,
            public_key.to_pem().decode("utf-8"),
            algorithms=self._algorithms,
            audience=self._config.client_id,
            issuer=self.metadata.issuer,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_iss": True,
                "verify_sub": True,
                "verify_iat": True,
                "verify_nbf": True,
                "verify_exp": check_expiry,
                "verify_jti": False,
                "verify_at_hash": False,
                "require_aud": True,
                "require_iss": True,
                "require_sub": True,
                "require_exp": check_expiry,
                "leeway": self._config.leeway,
            },
        )


__all__ = [
    "IdentityProvider",
    "OidcProvider",
    "fetch_provider_metadata",
    "get_signing_key",
]
