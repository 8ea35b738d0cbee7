"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.router import api_router
from app.config import settings
from app.core.exceptions import AppException
from app.core.middleware import RateLimitMiddleware, RequestLoggingMiddleware
from app.database import close_db, init_db
from app.services.gateway_service import get_gateway

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    if settings.debug:
        await init_db()
    gateway = get_gateway()
    if not gateway.webhook_configured:
        logger.warning(f"{gateway.gateway_type.value} webhook secret missing; webhooks will be rejected")
    logger.info(
        f"{settings.app_name} {settings.app_version} up "
        f"(env={settings.environment}, gateway={gateway.gateway_type.value}, locks={settings.lock_backend})"
    )
    yield
    await close_db()


def register_exception_handlers(app: FastAPI) -> None:
    """Render AppException subclasses as ``{"detail": ..., **context}``."""

    @app.exception_handler(AppException)
    async def handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning(f"{request.method} {request.url.path} failed: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, **exc.context},
            headers=exc.headers,
        )


def create_application() -> FastAPI:
    docs_enabled = settings.debug
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Vehicle rental booking lifecycle and payment reconciliation API",
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    # Last added runs first: CORS, then logging, then throttling
    if settings.environment != "development":
        app.add_middleware(RateLimitMiddleware, requests_per_minute=settings.rate_limit_per_minute)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict:
        gateway = get_gateway()
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "gateway": {
                "name": gateway.gateway_type.value,
                "configured": gateway.is_configured,
                "webhooks": gateway.webhook_configured,
            },
            "locks": settings.lock_backend,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    return app


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )
