"""
Dental Desk API

FastAPI entry point: logging setup, the session sweeper's lifetime, error
handlers and the chat/health routers.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from dental_desk import __version__
from dental_desk.api.routes import chat, health
from dental_desk.config import settings
from dental_desk.core.intelligence.session import get_session_store
from dental_desk.core.scheduling.calendar_client import get_calendar_client
from dental_desk.infra.audit import get_audit_logger
from dental_desk.infra.claude import close_claude_client

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "anthropic")


def setup_logging() -> None:
    """Configure root logging; DEBUG when the DEBUG setting is on."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def _warn_about_configuration() -> None:
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY not set, intents and confirmations use keywords only")
    if not settings.calendar_api_url:
        logger.warning("CALENDAR_API_URL not set, availability lookups will fail")
    if not settings.provider_calendar_map:
        logger.warning("PROVIDER_CALENDARS not set, bookings cannot be written")
    else:
        logger.info(f"Provider calendars: {', '.join(sorted(settings.provider_calendar_map))}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the idle-session sweeper; close outbound clients on shutdown."""
    setup_logging()
    logger.info(f"Starting {settings.app_name} {__version__} ({settings.app_env})")
    health.set_start_time()
    _warn_about_configuration()

    sessions = get_session_store()
    await sessions.start()

    yield

    logger.info("Shutting down")
    await sessions.stop()
    await get_calendar_client().close()
    await get_audit_logger().close()
    await close_claude_client()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Dental Desk API",
    description=(
        "Text-message front desk for a dental clinic: books, cancels and "
        "reschedules appointments against the providers' calendars, always "
        "asking the caller to confirm before anything is written."
    ),
    version=__version__,
    docs_url="/docs" if settings.is_development else None,
    redoc_url=None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": "Validation error", "detail": exc.errors()},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Last resort; chat turns already turn their own failures into replies."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else None,
        },
    )


@app.middleware("http")
async def request_timing(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    elapsed_ms = (time.time() - start_time) * 1000
    response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.1f}"
    logger.debug(f"{request.method} {request.url.path} -> {response.status_code} in {elapsed_ms:.1f}ms")
    return response


app.include_router(health.router)
app.include_router(chat.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    return {
        "name": settings.app_name,
        "version": __version__,
        "status": "running",
        "clinic": settings.clinic_name,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dental_desk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
