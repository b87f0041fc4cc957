"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from insureconnect.core.config import settings
from insureconnect.core.exceptions import DomainError, ValidationError
from insureconnect.core.structured_logging import build_log_context, configure_logging
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.db.session import engine

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Don't send PII to Sentry
    )
    logger.info("Sentry initialized for error tracking")

# ============================================================================
# Migrations
# ============================================================================

if settings.DB_AUTO_MIGRATE:
    from insureconnect.core.migrations import ensure_migrations

    status = ensure_migrations(engine, auto_migrate=True)
    logger.info("Database schema at %s", ",".join(status.current) or "base")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from insureconnect.core.rate_limit import limiter

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="InsureConnect API",
    description="Social network for insurance professionals",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# Live gateway connections; one registry per app instance
app.state.registry = ConnectionRegistry()

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Idempotency-Key", "X-Requested-With"],
)

# ============================================================================
# Error handling
# ============================================================================


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    """Every domain error kind maps to one stable category."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.category, "detail": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters are validation errors like any other."""
    errors = exc.errors()
    detail = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        detail = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={"error": ValidationError.category, "detail": detail},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error",
        extra=build_log_context(route=request.url.path, method=request.method),
    )
    return JSONResponse(status_code=500, content={"error": "internal_error"})


# ============================================================================
# Routers
# ============================================================================

from insureconnect.routers import admin, chat, notifications, posts, search, tokens, users
from insureconnect.routers import websocket as ws_router

app.include_router(posts.router, prefix="/posts", tags=["posts"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])
app.include_router(tokens.router, prefix="/tokens", tags=["tokens"])

# Notifications (user-scoped)
app.include_router(notifications.router, prefix="/me", tags=["notifications"])

app.include_router(chat.router, prefix="/chat", tags=["chat"])
app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(search.router, prefix="/search", tags=["search"])

# WebSocket gateway for chat, presence and live notifications
app.include_router(ws_router.router)

# Dev router (ONLY mounted in dev mode)
if settings.ENV == "dev":
    from insureconnect.routers import dev
    app.include_router(dev.router, prefix="/dev", tags=["dev"])


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {
        "status": "ok",
        "env": settings.ENV,
        "version": settings.VERSION,
        "connections": app.state.registry.get_total_connections(),
    }
