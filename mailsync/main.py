"""FastAPI application entry point.

Wiring only: lifespan, exception handlers, middleware, routers.
See mailsync.core.lifespan and mailsync.core.exception_handlers.

Settings are loaded inside create_app() so that tests can set env (and
clear the get_settings cache) before calling create_app().
"""

from fastapi import FastAPI

from mailsync.api.v1 import api_router
from mailsync.core.config import get_settings
from mailsync.core.exception_handlers import register_exception_handlers
from mailsync.core.lifespan import create_lifespan
from mailsync.middleware import CorrelationIDMiddleware


def create_app() -> FastAPI:
    """Build and return the FastAPI application. Settings are resolved here (deferred from import)."""
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=create_lifespan,
    )

    register_exception_handlers(app)
    app.add_middleware(
        CorrelationIDMiddleware,
        header_name=settings.correlation_id_header,
    )
    app.include_router(api_router, prefix="/api/v1")
    return app
