"""
Marketing forms API and single-page viewer.

Read-only access to live CRM marketing forms, protected by bearer tokens that
are issued in exchange for allow-listed API keys.
"""

import logging
from datetime import datetime
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, ORJSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.logging import bind_request_context, clear_request_context, configure_logging, get_logger
from middleware.auth import AuthMiddleware
from routers import marketing_forms, token

STATIC_DIR = Path(__file__).parent / "static"

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)

# Suppress noisy loggers
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting marketing forms service")
    await container.cache().startup()
    logger.info("Services started successfully")
    yield
    await container.cache().shutdown()
    logger.info("Services shutdown complete")


# Swagger UI and the OpenAPI document are only served in debug
app = FastAPI(
    title="Marketing Forms API",
    version="1.0.0",
    description="Read-only access to live CRM marketing forms",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
)


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    """Bind the request to the log context and turn unhandled errors into a generic 500."""

    async def dispatch(self, request: Request, call_next):
        clear_request_context()
        bind_request_context(method=request.method, path=request.url.path)
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled exception: {type(e).__name__}", exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "detail": "Internal server error"
                }
            )


# Bearer token check for the form API
app.add_middleware(AuthMiddleware)

# Wraps AuthMiddleware so its log events carry the request context
app.add_middleware(CatchAllExceptionsMiddleware)

# CORS must be outermost so preflights and 401s carry the headers
logger.info("Configuring CORS middleware", origins=settings.cors_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# Include routers
app.include_router(token.router)
app.include_router(marketing_forms.router)


@app.get("/health")
async def health_check():
    """Liveness and cache backend report."""
    return {
        "status": "OK",
        "service": "marketing-forms",
        "version": app.version,
        "environment": "development" if settings.is_development else "production",
        "cache_backend": container.cache().backend_name,
        "timestamp": datetime.now().isoformat()
    }


# Frontend: static assets plus index.html for client-side routes
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


@app.get("/", include_in_schema=False)
@app.get("/form/{slug}", include_in_schema=False)
async def spa_index(slug: str = ""):
    return FileResponse(STATIC_DIR / "index.html")


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting marketing forms service",
                host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        workers=1 if settings.is_development else settings.workers
    )
