from contextlib import asynccontextmanager
import logging
import threading

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shortlink.api import admin, deps, shortener
from shortlink.core.config import settings
from shortlink.core.errors import (
    CapacityExhaustedError,
    InvalidInputError,
    OperationCancelled,
    PersistenceError,
    ShortLinkError,
    ShortLinkExpired,
    ShortLinkNotFound,
)
from shortlink.core.logging_config import configure_logging
from shortlink.db.Connection import database
from shortlink.db.Models import models
from shortlink.services import metrics
from shortlink.services.access_log import AccessLogConsumer

logger = configure_logging(settings.LOG_LEVEL)
logger.info(f"Application '{settings.PROJECT_NAME}' starting up.")

# Most specific first
ERROR_STATUS = [
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (ShortLinkNotFound, status.HTTP_404_NOT_FOUND),
    (ShortLinkExpired, status.HTTP_410_GONE),
    (CapacityExhaustedError, status.HTTP_507_INSUFFICIENT_STORAGE),
    (OperationCancelled, status.HTTP_504_GATEWAY_TIMEOUT),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def _start_access_log_consumer(stop: threading.Event):
    consumer = AccessLogConsumer(
        database.redis_client,
        metrics.save_access_log,
        stream=settings.ACCESS_LOG_STREAM,
        group=settings.ACCESS_LOG_GROUP,
    )
    thread = threading.Thread(target=consumer.run, args=(stop,), name="access-log-consumer", daemon=True)
    thread.start()
    return thread


@asynccontextmanager
async def lifespan(app: FastAPI):
    models.Base.metadata.create_all(bind=database.engine)
    logger.info("Database models initialized/checked.")
    database.verify_database_connection()
    database.verify_redis_connection()

    stop = threading.Event()
    consumer_thread = None
    if settings.ACCESS_LOG_ENABLED:
        consumer_thread = _start_access_log_consumer(stop)

    yield

    logger.info("Shutting down gracefully...")
    stop.set()
    if consumer_thread is not None:
        consumer_thread.join(timeout=5)
    deps.get_dispatcher().shutdown(wait=True)
    deps.get_access_log_sink().close()
    try:
        database.engine.dispose()
    except Exception:
        logger.debug("Error disposing DB engine")
    try:
        database.redis_client.close()
    except Exception:
        logger.debug("Error closing Redis client")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Short link generation, redirection and visit analytics",
    lifespan=lifespan,
)


@app.get("/health", tags=["health"])
def health_check():
    return {"status": "healthy", "service": "shortlink"}


@app.get("/ready", tags=["health"])
def readiness_check():
    db_ok = database.verify_database_connection()
    redis_ok = database.verify_redis_connection()
    body = {"database": db_ok, "redis": redis_ok}
    if not db_ok:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"status": "unavailable", **body})
    # The cache is an accelerator; the service still answers without it
    return {"status": "ready" if redis_ok else "degraded", **body}


app.include_router(admin.router, prefix="/api/v1")
# Carries the catch-all /{short_code} route, so it goes last
app.include_router(shortener.router, prefix="")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(ShortLinkError)
async def shortlink_exception_handler(request: Request, exc: ShortLinkError):
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            if status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc}")
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    logger.error(f"Unmapped short link error: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
