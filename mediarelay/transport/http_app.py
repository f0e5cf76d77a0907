# mediarelay/transport/http_app.py
"""
HTTP application.

Endpoints:
1. Public: /health, /api/download (GET + POST alias, rate limited)
2. Monitoring: /metrics (Bearer METRICS_TOKEN when configured)
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from mediarelay.config import settings
from mediarelay.core.errors import MediaRelayError
from mediarelay.infra.http_client import close_all_sessions
from mediarelay.infra.logging_config import setup_logging, get_logger
from mediarelay.infra.metrics import get_metrics_collector
from mediarelay.infra.rate_limiter import InMemoryRateLimiter, RateLimitDependency
from mediarelay.infra.resolution_service import ResolutionService
from mediarelay.transport.download import download_handler
from mediarelay.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from mediarelay.transport.schemas import ErrorOut, ProbeOut
from mediarelay.transport.security import (
    require_metrics_auth,
    SecurityHeaders,
    sanitize_error_message,
)

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_service(request: Request) -> ResolutionService:
    """Resolution service from app state"""
    return request.app.state.service


async def rate_limit_check(request: Request) -> None:
    """Per-IP rate limit for /api/download"""
    limiter_dep = request.app.state.rate_limiter
    await limiter_dep(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return SecurityHeaders.add_security_headers(response)


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(f"Starting application: env={settings.app_env}")

    if settings.is_production:
        missing = settings.validate_required_for_production()
        if missing:
            logger.critical(f"Missing required production settings: {missing}")
            raise RuntimeError(f"Missing production config: {missing}")

    if getattr(fastapi_app.state, "service", None) is None:
        fastapi_app.state.service = ResolutionService()

    rate_limiter = InMemoryRateLimiter(
        max_requests=settings.rate_limit_per_minute,
        window_seconds=60
    )
    fastapi_app.state.rate_limiter = RateLimitDependency(rate_limiter)

    logger.info(
        f"Resolver ready: phases={[a.name.value for a in fastapi_app.state.service.chain.adapters]}, "
        f"fleet_subset={settings.fleet_subset_size}"
    )

    yield

    # SHUTDOWN
    logger.info("Shutting down application")
    await close_all_sessions()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="mediarelay",
    description="Staged media resolution and byte relay",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["Content-Disposition", "Content-Length", "X-Request-ID"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "Content-Length", "X-Request-ID"],
    )

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(MediaRelayError)
async def media_relay_error_handler(request: Request, exc: MediaRelayError):
    """Pipeline errors carry their own status code"""
    if exc.status_code >= 500:
        logger.error(f"Pipeline error: {exc.__class__.__name__}: {exc.detail}")
    else:
        logger.info(f"Rejected request: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": sanitize_error_message(exc, settings.is_production)},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": sanitize_error_message(exc, settings.is_production),
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Basic health check - PUBLIC endpoint."""
    return {"status": "healthy"}


_DOWNLOAD_RESPONSES = {
    200: {"model": ProbeOut, "description": "Probe result, URL lookup or relayed media body"},
    400: {"model": ErrorOut},
    429: {"model": ErrorOut},
    500: {"model": ErrorOut},
}


@app.get("/api/download", dependencies=[Depends(rate_limit_check)], responses=_DOWNLOAD_RESPONSES)
async def download(request: Request, service: ResolutionService = Depends(get_service)):
    """
    Resolve and optionally relay media for a content id.

    Query: id, type=audio|video|both, pipe, get_url, direct_url, action=proxy&url=
    """
    return await download_handler(request, service)


@app.post("/api/download", dependencies=[Depends(rate_limit_check)], responses=_DOWNLOAD_RESPONSES)
async def download_post(request: Request, service: ResolutionService = Depends(get_service)):
    """POST alias of GET /api/download; with action=proxy the body is forwarded upstream."""
    return await download_handler(request, service)


# ============================================================================
# MONITORING ENDPOINTS
# ============================================================================

@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics():
    """Counters and histograms from the in-process collector."""
    collector = get_metrics_collector()
    return collector.get_metrics()


def main() -> None:
    import uvicorn

    uvicorn.run(
        "mediarelay.transport.http_app:app",
        host="0.0.0.0",
        port=8099,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,  # Disable in prod (use middleware logging)
        server_header=False,
        date_header=False,
    )


if __name__ == "__main__":
    main()
