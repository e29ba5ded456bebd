"""
Main FastAPI application.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.api import api_router
from app.core.adaptive.config import AdaptiveEngineConfig
from app.core.adaptive.errors import AdaptiveEngineError
from app.core.adaptive.question_pool import QuestionPoolCache
from app.core.config import Settings, settings
from app.core.error_responses import engine_error_response
from app.core.logging_config import request_id_context, setup_logging
from app.middleware import RequestLoggingMiddleware
from app.models import Base, engine

# Initialize logging configuration at startup
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan event handler.

    Creates missing tables on startup (the schema is small and has no
    migrations) and drops the cached question pool on shutdown.
    """
    Base.metadata.create_all(bind=engine)
    logger.info(
        f"Adaptive engine ready (target_total={app.state.engine_config.target_total}, "
        f"pool_cache_ttl={app.state.question_pool_cache.ttl_seconds}s)"
    )

    yield

    app.state.question_pool_cache.invalidate()
    logger.info("Application shutting down")


# OpenAPI tags metadata
tags_metadata = [
    {
        "name": "health",
        "description": "Health check endpoints for monitoring application status",
    },
    {
        "name": "adaptive",
        "description": "Adaptive multi-stage assessment: start, submit answers, confidence and progress",
    },
]


def create_application(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The engine config and question pool cache are built here and kept on
    ``app.state``; route dependencies read them from there.
    """
    app_settings = app_settings or settings
    app = FastAPI(
        title=app_settings.APP_NAME,
        version=app_settings.APP_VERSION,
        lifespan=lifespan,
        description=(
            "Adaptive psychometric assessment API.\n\n"
            "A session administers a fixed number of items (70 by default) in four "
            "stages: broad screening, targeted building, precision refinement and "
            "gap filling. Each request submits answers and receives the next batch."
        ),
        docs_url=f"{app_settings.API_V1_PREFIX}/docs",
        redoc_url=f"{app_settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{app_settings.API_V1_PREFIX}/openapi.json",
        openapi_tags=tags_metadata,
    )

    app.state.engine_config = AdaptiveEngineConfig.from_settings(app_settings)
    app.state.question_pool_cache = QuestionPoolCache(
        ttl_seconds=app_settings.QUESTION_POOL_CACHE_TTL_SECONDS
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(api_router, prefix=app_settings.API_V1_PREFIX)

    @app.exception_handler(AdaptiveEngineError)
    async def engine_exception_handler(request: Request, exc: AdaptiveEngineError):
        """Translate engine errors into HTTP responses."""
        status_code, detail = engine_error_response(exc)
        extra = {
            "method": request.method,
            "path": str(request.url.path),
            "status_code": status_code,
        }
        session_id = getattr(exc, "session_id", None)
        if session_id:
            extra["session_id"] = session_id
        if status_code >= 500:
            logger.error(f"{exc.__class__.__name__}: {exc}", extra=extra)
        else:
            logger.warning(f"{exc.__class__.__name__}: {exc}", extra=extra)
        return JSONResponse(status_code=status_code, content={"detail": detail})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        """
        Handle request validation errors.
        """
        errors = [
            {
                "loc": list(error.get("loc", [])),
                "msg": str(error.get("msg", "")),
                "type": str(error.get("type", "")),
            }
            for error in exc.errors()
        ]
        logger.info(
            f"Request validation failed: {errors}",
            extra={"method": request.method, "path": str(request.url.path)},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": errors},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """
        Handle unexpected exceptions.

        The response carries an error_id (the request id when one is set)
        so support can find the full traceback in the logs.
        """
        error_id = request_id_context.get() or str(uuid.uuid4())
        logger.exception(
            f"Unhandled exception [error_id={error_id}]: {exc}",
            extra={"method": request.method, "path": str(request.url.path)},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                "error_id": error_id,
            },
        )

    return app


app = create_application()


@app.get("/")
async def root():
    """
    Root endpoint.
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
    }
