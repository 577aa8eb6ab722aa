# main.py — Tracklane API
# Features:
# - Request correlation IDs + timing log line per request
# - Security headers
# - Typed AppError -> {success, message, errors} envelope translation
# - Health check with DB verification

import os
import uuid
import time
import logging
from contextlib import asynccontextmanager
from typing import Dict, List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import init_db, close_db, get_db_session
from errors import AppError
from responses import fail, ok
from session_store import ConversationStore
from telemetry import setup_telemetry

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("tracklane")

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
VERSION = "1.0.0"


def _check_startup_config():
    """Log configuration problems once at startup."""
    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        logger.warning("JWT_SECRET_KEY is not set or shorter than 32 characters")
    if not os.getenv("ANTHROPIC_API_KEY"):
        logger.info("ANTHROPIC_API_KEY not set, assistant will answer with stub replies")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Tracklane v{VERSION} ({ENVIRONMENT})")
    await init_db()
    _check_startup_config()
    setup_telemetry(app)
    yield
    logger.info("Shutting down Tracklane")
    await close_db()


app = FastAPI(
    title="Tracklane",
    description="Task time tracking and QC review API",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Per-process assistant history, handed to routes via session_store.get_conversation_store
app.state.conversation_store = ConversationStore()

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
    return response


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

def _field_errors(exc: RequestValidationError) -> Dict[str, List[str]]:
    """Group pydantic errors by field path, dropping the body/query/path prefix."""
    errors: Dict[str, List[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", [])]
        if loc and loc[0] in ("body", "query", "path", "header"):
            loc = loc[1:]
        key = ".".join(loc) or "body"
        errors.setdefault(key, []).append(str(err.get("msg", "Invalid value")))
    return errors


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    body = fail(exc.message, exc.errors)
    body["code"] = exc.code
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content=fail("Validation failed", _field_errors(exc)))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error: {exc.orig}")
    return JSONResponse(status_code=409, content=fail("Conflicting data"))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=fail(str(exc.detail)))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    message = "Internal server error" if ENVIRONMENT == "production" else str(exc) or "Internal server error"
    return JSONResponse(status_code=500, content=fail(message))


# ============================================================
# ROUTERS
# ============================================================

from routers import auth, time_entries, tasks, projects, notifications, assistant

app.include_router(auth.router)
app.include_router(time_entries.router)
app.include_router(tasks.router)
app.include_router(projects.router)
app.include_router(notifications.router)
app.include_router(assistant.router)


# ============================================================
# HEALTH
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async for db in get_db_session():
            await db.execute(text("SELECT 1"))
            db_status = "connected"
            break
    except Exception as e:
        db_status = f"error: {str(e)[:100]}"

    return ok({
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "environment": ENVIRONMENT,
        "database": db_status,
    })


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=ENVIRONMENT != "production",
    )
