"""
FastAPI Application Factory
===========================

Entry point for the OIDC login service.

Architecture:
    Browser → /api/auth/login → IdP → /api/auth/callback → completion hook → frontend

Routers:
    - /api/auth/*   : OIDC login and callback
    - /health       : Health check endpoint

Environment Variables Required:
    - OIDC_CLIENT_ID / OIDC_CLIENT_SECRET: Client registration at the IdP
    - OIDC_REDIRECT_URL: Registered callback URL (under /api/auth)
    - OIDC_PROVIDER_URL: Issuer URL used for discovery
    - FRONTEND_URL: Where the browser goes after login
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn oidc_login.app.main:create_app --factory --reload --host 0.0.0.0 --port 8080

    Production:
        uvicorn oidc_login.app.main:create_app --factory --host 0.0.0.0 --port 8080 --workers 4

Applications embed the flow by passing their completion hook:
    app = create_app(on_login=my_hook)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .auth import DiscoveryError, LoginHook, auth_router, create_oidc_client
from .config import Settings, get_settings, validate_configuration
from .models import HealthResponse, OidcClientConfig


SERVICE_NAME = "oidc-login"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def create_app(
    on_login: Optional[LoginHook] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Application factory function.

    Discovery runs once in the lifespan startup; if it fails the service
    does not start. The resulting client is stored on ``app.state`` and is
    never modified while serving.

    Args:
        on_login: Completion hook invoked after a verified login
        settings: Settings to use instead of the environment

    Returns:
        FastAPI: Configured application instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup tasks:
            - Load and validate configuration
            - Run OIDC discovery and build the client

        Shutdown tasks:
            - Drop the client
        """
        config = settings or get_settings()
        setup_logging(config.LOG_LEVEL)
        logger = logging.getLogger("oidc_login.main")

        status = validate_configuration(config)
        for warning in status["warnings"]:
            logger.warning(warning)
        if not status["valid"]:
            for error in status["errors"]:
                logger.error(error)
            raise RuntimeError("Invalid configuration: " + "; ".join(status["errors"]))

        try:
            app.state.oidc_client = await create_oidc_client(
                OidcClientConfig.from_settings(config),
                on_login=on_login,
                logger=logging.getLogger("oidc_login.auth"),
            )
        except DiscoveryError as e:
            logger.error(f"OIDC discovery failed: {e}")
            raise

        logger.info(
            "OIDC login service started",
            extra={"provider": config.OIDC_NAME, "environment": config.ENVIRONMENT},
        )

        yield

        app.state.oidc_client = None
        logger.info("OIDC login service shutdown complete")

    app = FastAPI(
        title="OIDC Login Service",
        description="OpenID Connect authorization code login",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.oidc_client = None

    app.include_router(auth_router)

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """Report whether the OIDC client is configured."""
        client = request.app.state.oidc_client
        return HealthResponse(
            status="ok" if client is not None else "starting",
            service=SERVICE_NAME,
            provider=client.name if client is not None else None,
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Log unhandled errors and return a generic 500."""
        logger = logging.getLogger("oidc_login.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            }
        )

    return app


if __name__ == "__main__":
    """
    Direct execution entry point:
        python -m oidc_login.app.main
    """
    settings = get_settings()

    uvicorn.run(
        create_app(settings=settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
