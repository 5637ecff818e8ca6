"""FastAPI application entry point"""
import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi.errors import RateLimitExceeded

from tokencart import __version__
from tokencart.api import carts, health, principals, tokens
from tokencart.config import settings
from tokencart.database import Base, SessionLocal, engine
from tokencart.errors import AuthError, ForbiddenError, StoreUnavailableError
from tokencart.middleware.monitoring import record_auth_failure, record_forbidden, record_store_failure
from tokencart.middleware.rate_limit import limiter
from tokencart.services import build_services, run_sweeper
from tokencart.utils.logger import logger, setup_logging

# Setup logging
setup_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Startup
    if settings.DATABASE_AUTO_CREATE:
        import tokencart.models  # noqa: F401  registers tables on Base.metadata
        Base.metadata.create_all(bind=engine)

    services = build_services(settings, SessionLocal)
    app.state.services = services

    sweeper = None
    if settings.SESSION_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(run_sweeper(services, settings.SESSION_SWEEP_INTERVAL_SECONDS))

    logger.info("tokencart starting up", extra={"action": "startup"})
    yield

    # Shutdown
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
    logger.info("tokencart shutting down", extra={"action": "shutdown"})


# Create FastAPI app
app = FastAPI(
    title="tokencart",
    description="Token-based session authority with per-principal cart state",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ===== Middleware Setup =====

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.METRICS_ENABLED:
    from tokencart.middleware.monitoring import MonitoringMiddleware
    app.add_middleware(MonitoringMiddleware)

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        excluded_handlers=["/metrics", "/health", "/health/ready", "/health/live"],
    )
    instrumentator.instrument(app)
    instrumentator.expose(app, endpoint=settings.METRICS_PATH, include_in_schema=False)

app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors"""
    logger.warning(
        f"Rate limit exceeded on {request.method} {request.url.path}",
        extra={"action": "rate_limit"},
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please try again later.",
        },
    )

# ===== Route Setup =====

app.include_router(health.router)
app.include_router(tokens.router)
app.include_router(principals.router)
app.include_router(carts.router)


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "service": "tokencart",
        "version": __version__,
        "status": "operational",
        "docs": "/docs",
        "health": "/health",
    }


# ===== Error Handlers =====
# The single place where internal error kinds become client-visible statuses.

@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    """Any authentication failure -> generic 401; the reason stays server-side"""
    record_auth_failure(exc.reason.value)
    logger.warning(
        f"Authentication failed on {request.method} {request.url.path}",
        extra={"reason": exc.reason.value, "principal_id": exc.principal_id, "action": "authenticate"},
    )
    return JSONResponse(
        status_code=401,
        content={"error": "unauthenticated", "message": "Invalid or expired credentials"},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(ForbiddenError)
async def forbidden_handler(request: Request, exc: ForbiddenError):
    """Authenticated but not permitted -> 403"""
    record_forbidden(exc.operation)
    return JSONResponse(
        status_code=403,
        content={"error": "forbidden", "message": "You are not allowed to perform this operation"},
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    """Store timed out or is down -> 503, safe for the client to retry"""
    record_store_failure(exc.operation or "unknown")
    logger.error(
        f"Store unavailable on {request.method} {request.url.path}: {exc}",
        extra={"operation": exc.operation, "action": "store_unavailable"},
    )
    return JSONResponse(
        status_code=503,
        content={"error": "store_unavailable", "message": "Service temporarily unavailable. Please retry."},
        headers={"Retry-After": "1"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for uncaught errors"""
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {type(exc).__name__}",
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please contact support."
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tokencart.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
