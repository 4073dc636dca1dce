"""
Data Models Module

This module defines Pydantic models for the values that flow through the
OIDC login round trip.

Models are organized by functional area:
- Client configuration (one IdP registration)
- Provider models (discovery document subset)
- Token models (OAuth2 token bundle, verified ID token identity)
- Health check models
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from .config import Settings


REDACTED = "***"

REQUIRED_SCOPES = ("openid", "profile", "email")


# ============================================================================
# Client Configuration
# ============================================================================

class OidcClientConfig(BaseModel):
    """
    Immutable configuration of one OIDC client registration.

    A process may configure more than one IdP; ``name`` tells them apart in
    logs. Developer options default to the secure values.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Display name of this IdP configuration")
    client_id: str = Field(..., min_length=1, description="OAuth client ID")
    client_secret: SecretStr = Field(..., description="OAuth client secret")
    redirect_url: str = Field(..., description="Callback URL registered with the IdP")
    provider_url: str = Field(..., description="Issuer URL used for discovery")
    frontend_url: str = Field(..., description="Browser destination after login")

    allow_dev_login: bool = Field(default=False, description="Accept ?token=<raw ID token>")
    skip_expiry_check: bool = Field(default=False, description="Accept expired ID tokens")
    scopes: Tuple[str, ...] = Field(default=REQUIRED_SCOPES, description="Requested scopes")

    login_timeout: int = Field(default=600, gt=0, description="State cookie lifetime in seconds")
    cookie_name: str = Field(default="state", description="Name of the state cookie")
    cookie_path: str = Field(default="/api/auth", description="Path the state cookie is scoped to")
    idp_timeout: float = Field(default=10.0, gt=0, description="Deadline for each IdP call")
    leeway: int = Field(default=10, ge=0, description="Clock skew tolerance for token claims")
    jwks_cache_seconds: int = Field(default=3600, gt=0, description="JWKS cache lifetime")

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        """Ensure the standard OIDC scopes are always requested."""
        missing = [scope for scope in REQUIRED_SCOPES if scope not in v]
        if missing:
            raise ValueError(f"scopes must include {list(REQUIRED_SCOPES)}, missing: {missing}")
        return v

    @classmethod
    def from_settings(cls, settings: Settings) -> "OidcClientConfig":
        return cls(
            name=settings.OIDC_NAME,
            client_id=settings.OIDC_CLIENT_ID,
            client_secret=settings.OIDC_CLIENT_SECRET,
            redirect_url=settings.OIDC_REDIRECT_URL,
            provider_url=settings.OIDC_PROVIDER_URL,
            frontend_url=settings.FRONTEND_URL,
            allow_dev_login=settings.OIDC_ALLOW_DEV_LOGIN,
            skip_expiry_check=settings.OIDC_SKIP_EXPIRY_CHECK,
            scopes=tuple(settings.scopes_list),
            login_timeout=settings.LOGIN_TIMEOUT_SECONDS,
            cookie_path=settings.AUTH_COOKIE_PATH,
            idp_timeout=settings.IDP_TIMEOUT_SECONDS,
            leeway=settings.TOKEN_LEEWAY_SECONDS,
            jwks_cache_seconds=settings.JWKS_CACHE_SECONDS,
        )


# ============================================================================
# Provider Models
# ============================================================================

class ProviderMetadata(BaseModel):
    """Subset of the OpenID Provider discovery document used by the client."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    issuer: str = Field(..., description="Issuer identifier of the IdP")
    authorization_endpoint: str = Field(..., description="Browser-facing authorization URL")
    token_endpoint: str = Field(..., description="Back-channel token URL")
    jwks_uri: str = Field(..., description="URL of the published signing keys")
    userinfo_endpoint: Optional[str] = Field(None, description="UserInfo URL, if advertised")
    id_token_signing_alg_values_supported: List[str] = Field(
        default_factory=lambda: ["RS256"],
        description="Algorithms the IdP signs ID tokens with",
    )


# ============================================================================
# Token Models
# ============================================================================

class OAuth2Token(BaseModel):
    """
    Token bundle returned by the IdP token endpoint.

    Access and refresh tokens are held as ``SecretStr`` so that ``repr`` and
    log output never contain them. The raw ID token is kept separately and
    is excluded from ``repr``.
    """

    access_token: SecretStr = Field(..., description="OAuth2 access token")
    token_type: str = Field(default="Bearer", description="Token type")
    refresh_token: Optional[SecretStr] = Field(None, description="OAuth2 refresh token")
    expiry: Optional[datetime] = Field(None, description="Access token expiry (UTC)")
    id_token: Optional[str] = Field(None, repr=False, description="Embedded raw ID token")

    @classmethod
    def from_token_response(
        cls,
        data: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> "OAuth2Token":
        """
        Build a token from a token endpoint JSON response.

        ``expires_in`` is converted to an absolute expiry relative to ``now``.
        """
        now = now or datetime.now(timezone.utc)
        expiry = None
        expires_in = data.get("expires_in")
        if expires_in:
            expiry = now + timedelta(seconds=int(expires_in))

        refresh_token = data.get("refresh_token")
        id_token = data.get("id_token")

        return cls(
            access_token=data.get("access_token") or "",
            token_type=data.get("token_type") or "Bearer",
            refresh_token=refresh_token if refresh_token else None,
            expiry=expiry,
            id_token=id_token if isinstance(id_token, str) and id_token else None,
        )

    def redacted(self) -> Dict[str, Any]:
        """Return a JSON-ready view with secret values replaced by ``***``."""
        access = self.access_token.get_secret_value()
        refresh = self.refresh_token.get_secret_value() if self.refresh_token else ""
        return {
            "access_token": REDACTED if access else "",
            "token_type": self.token_type,
            "refresh_token": REDACTED if refresh else "",
            "expiry": self.expiry.isoformat() if self.expiry else None,
        }


class VerifiedIdentity(BaseModel):
    """Identity asserted by an ID token whose signature and claims verified."""

    model_config = ConfigDict(frozen=True)

    subject: str = Field(..., description="Subject identifier (sub)")
    issuer: str = Field(..., description="Issuer (iss)")
    audience: List[str] = Field(default_factory=list, description="Audience (aud)")
    expiry: Optional[datetime] = Field(None, description="Expiry (exp)")
    issued_at: Optional[datetime] = Field(None, description="Issued at (iat)")
    nonce: Optional[str] = Field(None, description="Nonce echoed by the IdP")
    claims: Dict[str, Any] = Field(default_factory=dict, description="Full claim set")

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "VerifiedIdentity":
        aud = claims.get("aud")
        if isinstance(aud, str):
            audience = [aud]
        else:
            audience = list(aud or [])

        return cls(
            subject=claims["sub"],
            issuer=claims.get("iss", ""),
            audience=audience,
            expiry=_from_timestamp(claims.get("exp")),
            issued_at=_from_timestamp(claims.get("iat")),
            nonce=claims.get("nonce"),
            claims=dict(claims),
        )


def _from_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    provider: Optional[str] = Field(None, description="Configured IdP display name")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Check timestamp",
    )
