"""Middleware configuration for FastAPI application"""
import logging
import time

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.logging import security_logger
from app.core.security import log_api_access

logger = logging.getLogger(__name__)


def get_allowed_origins():
    """Get list of allowed CORS origins"""
    allowed_origins = [settings.FRONTEND_URL]
    if settings.ENVIRONMENT == "development":
        allowed_origins.extend([
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173"
        ])
    return allowed_origins


def setup_cors_middleware(app):
    """Setup CORS middleware for FastAPI app"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


async def access_log_middleware(request: Request, call_next):
    """Log every API request with its outcome and latency"""
    status_code = 500
    error = None
    started = time.perf_counter()

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception as e:
        error = str(e)
        security_logger.error(f"Request failed in middleware: {error}", exc_info=True)
        raise
    finally:
        if request.url.path not in ("/health", "/metrics"):
            log_api_access(request, status_code, error, (time.perf_counter() - started) * 1000)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies and parameters as 400"""
    details = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    message = "; ".join(f"{d['field']}: {d['message']}" if d["field"] else d["message"] for d in details)
    return JSONResponse(
        status_code=400,
        content={"error": message or "Invalid request", "details": details}
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as {"error": ...} like the rest of the API"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None)
    )
