"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.api import social_posts
from app.core.config import settings
from app.core.logging import setup_logging
from app.core.middleware import (
    access_log_middleware, global_exception_handler, http_exception_handler, setup_cors_middleware,
    validation_exception_handler
)
from app.core.otel import initialize_otel, instrument_app, setup_otel_logging
from app.db.redis import ping_redis
from app.db.session import engine, init_db

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        ping_redis()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    worker = None
    if settings.RUN_POST_WORKER:
        from app.tasks.post_worker import post_worker_task
        worker = asyncio.create_task(post_worker_task())
        logger.info("Social post worker started")
    else:
        logger.info("RUN_POST_WORKER disabled - jobs are processed by a separate worker")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if worker is not None:
        worker.cancel()


# Create FastAPI app
app = FastAPI(
    title="Crosspost Backend",
    description="Asynchronous product video posting to YouTube, Facebook and Instagram",
    version="1.0.0",
    lifespan=lifespan
)

instrument_app(app, engine)
setup_cors_middleware(app)
app.middleware("http")(access_log_middleware)

app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(social_posts.router)


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
