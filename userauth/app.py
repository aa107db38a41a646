from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request

from userauth.api.error_handling import register_exception_handlers
from userauth.api.routes import router
from userauth.config import Settings
from userauth.logging import get_logger, set_correlation_id
from userauth.service.runtime import Runtime

logger = get_logger(__name__)

__version__ = "0.1.0"


def create_app(
    settings: Optional[Settings] = None, *, runtime: Optional[Runtime] = None
) -> FastAPI:
    """Build the FastAPI application.

    Settings are read from the environment once, here, unless given. Pass a
    prebuilt ``runtime`` to inject fake collaborators.

    Run with ``uvicorn userauth.app:create_app --factory``.
    """
    if runtime is None:
        runtime = Runtime(settings or Settings.from_env())
    app = FastAPI(title="User Auth Service", version=__version__)
    app.state.runtime = runtime

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        """Tag every log line and response with the request's X-Request-ID."""
        client_request_id = request.headers.get("X-Request-ID")
        correlation_id = set_correlation_id(client_request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if request.url.path.startswith("/api/"):
            response.headers.setdefault("Cache-Control", "no-store")
        return response

    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/healthz", tags=["health"])
    async def health() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "service": runtime.settings.service_name,
            "version": __version__,
        }

    logger.info("app_created", service_name=runtime.settings.service_name)
    return app
