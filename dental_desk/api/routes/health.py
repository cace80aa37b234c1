"""
Health Check Endpoints

Liveness, readiness and a basic status probe for the load balancer.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from dental_desk import __version__
from dental_desk.config import settings
from dental_desk.core.intelligence.session import get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

_start_time: Optional[datetime] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def set_start_time() -> None:
    """Remember when the application started; called from the lifespan."""
    global _start_time
    _start_time = _now()


def get_uptime_seconds() -> Optional[float]:
    if _start_time is None:
        return None
    return (_now() - _start_time).total_seconds()


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadyResponse(BaseModel):
    """Readiness with one entry per dependency."""
    status: str
    timestamp: datetime
    checks: dict[str, str]
    active_sessions: int


class LiveResponse(BaseModel):
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


def readiness_checks() -> dict[str, str]:
    """Status of everything a conversation turn depends on."""
    store = get_session_store()
    return {
        "session_sweeper": "ok" if store.is_sweeping else "stopped",
        "calendar": "configured" if settings.calendar_api_url else "missing",
        "provider_calendars": "configured" if settings.provider_calendar_map else "missing",
        "language_model": "configured" if settings.anthropic_api_key else "keywords_only",
    }


# Missing pieces that stop the service from taking conversations at all
REQUIRED_CHECKS = {"session_sweeper": "ok", "calendar": "configured"}


@router.get(
    "",
    response_model=HealthResponse,
    summary="Basic health check",
    description="200 while the process is serving requests. Dependencies are not checked.",
)
async def health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        timestamp=_now(),
        version=__version__,
        environment=settings.app_env,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    description=(
        "503 until the idle-session sweeper is running and a calendar "
        "service URL is configured."
    ),
    responses={503: {"description": "Not ready"}},
)
async def ready():
    checks = readiness_checks()
    failing = [name for name, wanted in REQUIRED_CHECKS.items() if checks[name] != wanted]

    response = ReadyResponse(
        status="not_ready" if failing else "ready",
        timestamp=_now(),
        checks=checks,
        active_sessions=len(get_session_store()),
    )

    if failing:
        logger.warning(f"Readiness check failing: {', '.join(failing)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get(
    "/live",
    response_model=LiveResponse,
    summary="Liveness probe",
    description="200 while the process is alive; used for restart decisions.",
)
async def live() -> LiveResponse:
    return LiveResponse(
        status="alive",
        timestamp=_now(),
        uptime_seconds=get_uptime_seconds(),
    )
