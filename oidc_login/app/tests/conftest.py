"""
Shared fixtures for the OIDC login tests.

Provides RSA test keys, signed ID tokens, a JWKS document, a controllable
clock and a fake IdP gateway that records every call made to it.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jwt.algorithms import RSAAlgorithm

from oidc_login.app.auth import OidcClient, auth_router
from oidc_login.app.auth.errors import TokenExchangeError, TokenVerificationError
from oidc_login.app.models import (
    OAuth2Token,
    OidcClientConfig,
    ProviderMetadata,
    VerifiedIdentity,
)


ISSUER = "https://idp.example.com/realms/test"
CLIENT_ID = "test-client-id"
CLIENT_SECRET = "test-client-secret"
REDIRECT_URL = "https://app.example.com/api/auth/callback"
FRONTEND_URL = "https://app.example.com/datasets"
TEST_KID = "test-key-id-2024"


# Test RSA key pair generation for mocking JWKS
def generate_test_keys():
    """Generate RSA key pair for testing"""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
        backend=default_backend()
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )

    return private_key, private_pem.decode()


# Generate test keys once for reuse
TEST_PRIVATE_KEY, TEST_PRIVATE_PEM = generate_test_keys()
OTHER_PRIVATE_KEY, OTHER_PRIVATE_PEM = generate_test_keys()


def create_id_token(
    subject: str = "user-123",
    issuer: str = ISSUER,
    audience: str = CLIENT_ID,
    kid: Optional[str] = TEST_KID,
    exp_delta_minutes: int = 60,
    private_pem: str = TEST_PRIVATE_PEM,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Create an ID token signed with a test private key.

    Args:
        subject: sub claim
        issuer: iss claim
        audience: aud claim
        kid: Key ID for JWKS matching (None omits it)
        exp_delta_minutes: Token expiry in minutes (negative for expired)
        private_pem: Signing key

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)
    payload = {
        "iss": issuer,
        "sub": subject,
        "aud": audience,
        "exp": now + timedelta(minutes=exp_delta_minutes),
        "iat": now - timedelta(minutes=1),
        "email": "user@example.com",
        "name": "Test User",
    }
    if extra_claims:
        payload.update(extra_claims)

    headers = {"kid": kid} if kid else {}
    return jwt.encode(payload, private_pem, algorithm="RS256", headers=headers)


def create_jwks(kid: str = TEST_KID, private_key=TEST_PRIVATE_KEY) -> Dict[str, Any]:
    """
    Create a JWKS document with the public half of ``private_key``.
    """
    key = RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    key["kid"] = kid
    key["use"] = "sig"
    key["alg"] = "RS256"

    return {"keys": [key]}


def discovery_document(issuer: str = ISSUER) -> Dict[str, Any]:
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/protocol/openid-connect/auth",
        "token_endpoint": f"{issuer}/protocol/openid-connect/token",
        "jwks_uri": f"{issuer}/protocol/openid-connect/certs",
        "userinfo_endpoint": f"{issuer}/protocol/openid-connect/userinfo",
        "id_token_signing_alg_values_supported": ["RS256", "HS256"],
    }


# =============================================================================
# Fakes
# =============================================================================

class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, now: Optional[float] = None):
        self.now = now if now is not None else time.time()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """
    In-memory IdP gateway.

    Accepts the authorization code ``good-code`` (``no-id-token`` yields a
    bundle without an ID token) and the ID tokens in ``valid_tokens``.
    """

    def __init__(self, valid_tokens=("good-id-token", "dev-id-token")):
        self.metadata = ProviderMetadata.model_validate(discovery_document())
        self.valid_tokens = set(valid_tokens)
        self.calls: List[str] = []

    async def exchange_code(self, code: str) -> OAuth2Token:
        self.calls.append(f"exchange:{code}")
        if code == "good-code":
            return OAuth2Token(
                access_token="access-secret",
                refresh_token="refresh-secret",
                id_token="good-id-token",
            )
        if code == "no-id-token":
            return OAuth2Token(access_token="access-secret")
        raise TokenExchangeError("invalid_grant")

    async def verify_id_token(self, raw_id_token: str) -> VerifiedIdentity:
        self.calls.append(f"verify:{raw_id_token}")
        if raw_id_token not in self.valid_tokens:
            raise TokenVerificationError("signature invalid")
        return VerifiedIdentity.from_claims({
            "iss": ISSUER,
            "sub": "user-123",
            "aud": CLIENT_ID,
            "exp": int(time.time()) + 3600,
            "iat": int(time.time()),
            "email": "user@example.com",
        })


def make_config(**overrides) -> OidcClientConfig:
    values = dict(
        name="test",
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_url=REDIRECT_URL,
        provider_url=ISSUER,
        frontend_url=FRONTEND_URL,
    )
    values.update(overrides)
    return OidcClientConfig(**values)


def make_test_client(oidc_client: OidcClient) -> TestClient:
    """HTTPS test client so the Secure state cookie is stored and sent back."""
    app = FastAPI()
    app.state.oidc_client = oidc_client
    app.include_router(auth_router)
    return TestClient(app, base_url="https://testserver", follow_redirects=False)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client_config():
    return make_config()
