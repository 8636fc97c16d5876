# main.py — Bounty service API
# Features:
# - Request correlation IDs bound to the structured logger
# - Security headers
# - Uniform {success, data, error, meta} envelope for every response
# - Health check with DB verification
# - All routers registered

import os
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import init_db, close_db, get_db_context
from errors import AppError
from logging_system import (
    RequestContext, set_current_context, reset_current_context,
    log_request, log_response, log_error,
)
from responses import api_error, api_success

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("bounties")

VERSION = "1.0.0"


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append("⚠️  JWT_SECRET_KEY is not set or shorter than 32 characters; session tokens will not survive a restart")

    if os.getenv("TRUST_IDENTITY_HEADER", "true").lower() == "true":
        logger.info("🔑 Trusting x-user-pubkey from the upstream verifier")
        if os.getenv("ENVIRONMENT") == "production":
            warnings.append("⚠️  TRUST_IDENTITY_HEADER=true in production; the API must only be reachable through the verifier")

    if os.getenv("DATABASE_URL", "").startswith("sqlite"):
        warnings.append("⚠️  Running on SQLite; concurrent writers are serialised")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Starting bounty service v{VERSION}...")
    await init_db()
    logger.info("✅ Database initialized")
    _check_startup_config()
    yield
    logger.info("🛑 Shutting down bounty service...")
    await close_db()


app = FastAPI(
    title="Bounties",
    description="Workspace bounty lifecycle and sat budget ledger",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID", "X-User-Pubkey"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    correlation_id = request.headers.get("X-Correlation-ID", request_id)
    request.state.request_id = request_id
    request.state.correlation_id = correlation_id

    token = set_current_context(RequestContext.create(request_id, correlation_id))
    try:
        log_request(request.method, request.url.path)
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Response-Time"] = f"{duration:.4f}s"

        log_response(response.status_code, duration * 1000, metadata={"path": request.url.path})
        return response
    finally:
        reset_current_context(token)


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

HTTP_STATUS_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
}


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return api_error(exc.code, exc.message, exc.status_code, exc.details)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability
    errors = []
    for err in exc.errors():
        errors.append({
            "type": str(err.get("type", "unknown")),
            "loc": [str(part) for part in err.get("loc", [])],
            "msg": str(err.get("msg", "")),
        })
    return api_error("VALIDATION_ERROR", "Request validation failed", 400, {"errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = HTTP_STATUS_CODES.get(exc.status_code)
    if code is None:
        code = "INTERNAL_SERVER_ERROR" if exc.status_code >= 500 else "VALIDATION_ERROR"
    return api_error(code, str(exc.detail), exc.status_code)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    log_error(f"Unhandled exception: {exc}", error=exc)
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return api_error(
        "INTERNAL_SERVER_ERROR", "Internal server error", 500,
        request_id=getattr(request.state, "request_id", None),
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import users, workspaces, workspace_bounties, bounties, proofs, bounty_requests, comments

app.include_router(users.router)
app.include_router(workspaces.router)
app.include_router(workspace_bounties.router)
app.include_router(bounties.router)
app.include_router(proofs.router)
app.include_router(bounty_requests.router)
app.include_router(comments.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
            db_status = "connected"
    except Exception as e:
        db_status = "error"
        log_error("Health check could not reach the database", error=e)
        logger.error(f"Health check database error: {e}", exc_info=True)

    return api_success({
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
    })


@app.get("/")
async def root():
    return api_success({
        "name": "Bounties",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
    })


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
        workers=int(os.getenv("WORKERS", 1)),
    )
