"""Server-side OpenID Connect authorization code login."""

__version__ = "1.0.0"
