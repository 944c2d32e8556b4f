# main.py — Task portal API
# Features:
# - Server-side sessions (cookie-held opaque token)
# - Request correlation IDs and timing
# - Security headers
# - Uniform {"success": ..., "message"/"data": ...} error envelope
# - Health check with DB verification

import os
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import SessionStore
from database import init_db, close_db, get_db_session
from errors import AppError, ERROR_CATALOGUE
from storage import StorageConfig

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("task-portal")

VERSION = "1.0.0"


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    missing = StorageConfig.missing_env()
    if missing:
        warnings.append(
            f"Object storage not configured (missing {', '.join(missing)}) — "
            "file uploads and downloads will fail until it is"
        )

    if os.getenv("ENVIRONMENT") == "production" and os.getenv("SESSION_COOKIE_SECURE", "false").lower() != "true":
        warnings.append("SESSION_COOKIE_SECURE is off in production — session cookies will be sent over plain HTTP")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting task portal v{VERSION}...")
    await init_db()
    _check_startup_config()
    yield
    logger.info("Shutting down task portal...")
    await close_db()


app = FastAPI(
    title="Task Portal",
    description="Task assignment and execution tracking for administrators and collaborators",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.sessions = SessionStore()

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:8080"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Requested-With", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID", "Content-Disposition"],
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

    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} → {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
    return response


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

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

def _envelope(request: Request, status_code: int, message: str, code: str, **extra) -> JSONResponse:
    content = {
        "success": False,
        "message": message,
        "code": code,
        "request_id": getattr(request.state, "request_id", None),
    }
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return _envelope(request, exc.status_code, exc.message, exc.code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability
    errors = [
        {
            "type": str(err.get("type", "unknown")),
            "loc": [str(part) for part in err.get("loc", [])],
            "msg": str(err.get("msg", "")),
        }
        for err in exc.errors()
    ]
    return _envelope(
        request, 400, ERROR_CATALOGUE["TP-REQ-001"]["message"], "TP-REQ-001", errors=errors,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    codes = {404: ("TP-REQ-002", "Endpoint not found"), 405: ("TP-REQ-003", "Method not allowed")}
    code, message = codes.get(exc.status_code, ("TP-SYS-001", str(exc.detail)))
    response = _envelope(request, exc.status_code, message, code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _envelope(request, 500, "Internal server error", "TP-SYS-001")


# ============================================================
# ROUTERS
# ============================================================

from routers import auth, tasks, executions

app.include_router(auth.router)
app.include_router(tasks.router)
app.include_router(executions.router)


# ============================================================
# HEALTH & ROOT
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
        logger.warning(f"Health check database probe failed: {e}")
        db_status = "error"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
        "object_storage": "configured" if not StorageConfig.missing_env() else "not_configured",
    }


@app.get("/")
async def root():
    return {"success": True, "message": "Task portal API is running", "version": VERSION}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
    )
