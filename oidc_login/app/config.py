"""
Configuration module for the OIDC login service.

This module uses Pydantic Settings to load and validate environment variables
for the Identity Provider registration, the login transaction (state cookie,
timeouts) and the server process.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the OIDC client registration, the login
    transaction and the server process is defined here.
    """

    # =========================================================================
    # Identity Provider Registration (OIDC Authentication)
    # =========================================================================

    OIDC_NAME: str = Field(
        default="default",
        description="Display name of this IdP configuration (used in logs)",
        min_length=1,
    )

    OIDC_CLIENT_ID: str = Field(
        ...,
        description="OAuth client ID registered with the IdP",
        min_length=1,
    )

    OIDC_CLIENT_SECRET: str = Field(
        ...,
        description="OAuth client secret registered with the IdP",
        min_length=1,
    )

    OIDC_REDIRECT_URL: str = Field(
        ...,
        description="Callback URL registered with the IdP (e.g., https://app.example.com/api/auth/callback)",
    )

    OIDC_PROVIDER_URL: str = Field(
        ...,
        description="Issuer URL used for OIDC discovery (e.g., https://login.example.com/realms/main)",
    )

    FRONTEND_URL: str = Field(
        ...,
        description="Where the browser is sent once the login flow completes",
    )

    OIDC_EXTRA_SCOPES: Optional[str] = Field(
        None,
        description="Comma-separated scopes requested in addition to 'openid profile email'",
    )

    # =========================================================================
    # Developer Options (never in production)
    # =========================================================================

    OIDC_ALLOW_DEV_LOGIN: bool = Field(
        default=False,
        description="Allow logging in with a raw ID token passed as ?token=...",
    )

    OIDC_SKIP_EXPIRY_CHECK: bool = Field(
        default=False,
        description="Accept expired ID tokens (signature, issuer and audience are still checked)",
    )

    # =========================================================================
    # Login Transaction
    # =========================================================================

    LOGIN_TIMEOUT_SECONDS: int = Field(
        default=600,
        description="Lifetime of the login state cookie in seconds",
        ge=60,
        le=3600,
    )

    AUTH_COOKIE_PATH: str = Field(
        default="/api/auth",
        description="URL path the state cookie is scoped to",
    )

    IDP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Deadline for each network call to the IdP",
        gt=0,
        le=60,
    )

    TOKEN_LEEWAY_SECONDS: int = Field(
        default=10,
        description="Clock skew tolerance applied to ID token time claims",
        ge=0,
        le=300,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the IdP signing keys in seconds",
        ge=300,  # Min 5 minutes
        le=86400,  # Max 24 hours
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    ENVIRONMENT: str = Field(
        default="development",
        description="Deployment environment (development, staging, production)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the server",
    )

    PORT: int = Field(
        default=8080,
        description="Port to bind the server",
        ge=1,
        le=65535,
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra env vars not defined here
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def scopes_list(self) -> List[str]:
        """
        Scopes requested at the authorization endpoint.

        Always starts with 'openid', 'profile' and 'email'.
        """
        scopes = ["openid", "profile", "email"]
        if self.OIDC_EXTRA_SCOPES:
            for scope in self.OIDC_EXTRA_SCOPES.split(","):
                scope = scope.strip()
                if scope and scope not in scopes:
                    scopes.append(scope)
        return scopes

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("OIDC_REDIRECT_URL", "OIDC_PROVIDER_URL", "FRONTEND_URL")
    @classmethod
    def validate_absolute_url(cls, v: str) -> str:
        """
        Validate that URLs are absolute http(s) URLs.

        Raises:
            ValueError: If the scheme or host is missing
        """
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(
                f"Invalid URL: '{v}'. Expected an absolute http(s) URL"
            )
        return v

    @field_validator("AUTH_COOKIE_PATH")
    @classmethod
    def validate_cookie_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Cookie path must start with '/', got: {v}")
        if v == "/":
            raise ValueError("Cookie path must not be the site root")
        return v.rstrip("/")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        if v.upper() not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return v.upper()


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Optional[Settings] = None) -> dict:
    """
    Validate critical configuration settings and return a status report.

    This is called during application startup; the service refuses to start
    when ``valid`` is False.

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration()
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    settings = settings or get_settings()
    errors = []
    warnings = []

    # Developer options must never reach production
    if settings.is_production:
        if settings.OIDC_ALLOW_DEV_LOGIN:
            errors.append("OIDC_ALLOW_DEV_LOGIN must not be enabled in production")
        if settings.OIDC_SKIP_EXPIRY_CHECK:
            errors.append("OIDC_SKIP_EXPIRY_CHECK must not be enabled in production")
        if urlparse(settings.OIDC_REDIRECT_URL).scheme != "https":
            errors.append("OIDC_REDIRECT_URL must use https in production")
    else:
        if settings.OIDC_ALLOW_DEV_LOGIN:
            warnings.append("Developer token login is enabled")
        if settings.OIDC_SKIP_EXPIRY_CHECK:
            warnings.append("ID token expiry is not checked")

    # The state cookie has to reach the callback
    callback_path = urlparse(settings.OIDC_REDIRECT_URL).path
    if not callback_path.startswith(settings.AUTH_COOKIE_PATH + "/"):
        errors.append(
            f"OIDC_REDIRECT_URL path '{callback_path}' is outside AUTH_COOKIE_PATH "
            f"'{settings.AUTH_COOKIE_PATH}'; the state cookie would not be sent"
        )

    if urlparse(settings.OIDC_PROVIDER_URL).scheme != "https":
        warnings.append("OIDC_PROVIDER_URL is not https")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "provider": settings.OIDC_NAME,
        "login_timeout_seconds": settings.LOGIN_TIMEOUT_SECONDS,
    }


if __name__ == "__main__":
    """
    Validate your .env configuration:
        python -m oidc_login.app.config
    """
    config = get_settings()

    print("=" * 80)
    print("OIDC LOGIN CONFIGURATION")
    print("=" * 80)
    print(f"  Provider:       {config.OIDC_NAME} ({config.OIDC_PROVIDER_URL})")
    print(f"  Client ID:      {config.OIDC_CLIENT_ID}")
    print(f"  Redirect URL:   {config.OIDC_REDIRECT_URL}")
    print(f"  Frontend URL:   {config.FRONTEND_URL}")
    print(f"  Scopes:         {' '.join(config.scopes_list)}")
    print(f"  Login timeout:  {config.LOGIN_TIMEOUT_SECONDS} seconds")
    print(f"  Cookie path:    {config.AUTH_COOKIE_PATH}")

    status = validate_configuration(config)
    print()
    if status["valid"]:
        print("✓ All critical checks passed!")
    else:
        print("✗ Configuration errors found:")
        for error in status["errors"]:
            print(f"  - {error}")
    for warning in status["warnings"]:
        print(f"⚠ {warning}")
