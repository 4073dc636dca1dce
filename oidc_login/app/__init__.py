"""
OIDC login service application package.

Subpackages:
- auth: OpenID Connect authorization code login flow
"""
