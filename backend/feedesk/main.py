# ============================================================
# feedesk/main.py
#
# Entry point for the FeeDesk API.
#
# What this file does:
# - Creates the FastAPI app instance
# - Adds CORS middleware (the admin frontend calls us)
# - Registers all routes under /api/v1
# - Adds a /health endpoint for Docker healthchecks
# - Adds global error handlers for clean error responses
#
# Run locally (from the repo root):
#   uvicorn feedesk.main:app --app-dir backend --reload
# or: python -m feedesk.main  (with backend/ on the path)
# ============================================================

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import logging
import time

from feedesk.core.config import settings
from feedesk.core.database import check_db_connection
from feedesk.api.v1.router import api_router

logging.basicConfig(
    level=logging.INFO if settings.is_production else logging.DEBUG,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

# Low-level HTTP debug logs would print the Supabase service key.
if settings.is_production and not settings.HTTP_CLIENT_DEBUG_LOGS:
    for noisy_logger in ("httpx", "httpcore", "hpack"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


# ── Startup / Shutdown ───────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    db_ok = await check_db_connection()
    if db_ok:
        logger.info("Database connection OK")
    else:
        logger.error("Database connection FAILED: check SUPABASE_URL and keys")

    yield

    logger.info(f"Shutting down {settings.APP_NAME}")


# ── Create App ───────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="FeeDesk: student fee ledger, concessions and fee collection.",
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    lifespan=lifespan,
)


# ── CORS Middleware ──────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request timing middleware ────────────────────────────────
@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = (time.time() - start) * 1000
    logger.info(f"{request.method} {request.url.path} → {response.status_code} ({duration:.1f}ms)")
    return response


# ── Global error handlers ────────────────────────────────────
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Pydantic request errors in the same envelope as ledger validation errors."""
    errors = []
    for error in exc.errors():
        field = " → ".join(str(e) for e in error["loc"])
        errors.append(f"{field}: {error['msg']}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "message": "Validation error",
            "detail": errors,
        },
    )


@app.exception_handler(Exception)
async def global_error_handler(request: Request, exc: Exception):
    """Catch-all for unexpected errors. Never expose stack traces."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "message": "An unexpected error occurred. Please try again.",
        },
    )


# ── Routes ───────────────────────────────────────────────────
app.include_router(api_router, prefix=settings.API_PREFIX)


# ── Health check ─────────────────────────────────────────────
@app.get("/health", tags=["Health"])
async def health_check():
    """200 when the API and DB are reachable, 503 if the DB is down."""
    db_ok = await check_db_connection()
    if db_ok:
        return {"status": "healthy", "version": settings.APP_VERSION}
    return JSONResponse(
        status_code=503,
        content={"status": "unhealthy", "reason": "database_unreachable"},
    )


@app.get("/", tags=["Health"])
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("feedesk.main:app", host="0.0.0.0", port=8000, reload=settings.is_development)
