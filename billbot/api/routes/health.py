from __future__ import annotations

import os
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from billbot.api.deps import get_health_checks, get_registry
from billbot.models.session import utc_now_iso
from billbot.services import health as health_service
from billbot.services.registry import SessionRegistry

router = APIRouter(prefix="/api/health", tags=["health"])

_started = time.monotonic()


def _uptime() -> float:
    return round(time.monotonic() - _started, 1)


@router.get("")
async def health(registry: SessionRegistry = Depends(get_registry)):
    return {
        "status": "ok",
        "service": "billbot",
        "streaming": registry.stats(),
    }


@router.get("/live")
async def live():
    return {"status": "alive", "timestamp": utc_now_iso(), "uptime": _uptime(), "pid": os.getpid()}


@router.get("/ready")
async def ready(registry: SessionRegistry = Depends(get_registry)):
    problems = health_service.configuration_problems()
    if problems:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "timestamp": utc_now_iso(), "problems": problems},
        )
    return {"status": "ready", "timestamp": utc_now_iso(), "active_sessions": len(registry)}


@router.get("/detailed")
async def detailed(
    registry: SessionRegistry = Depends(get_registry),
    checks: dict[str, health_service.Check] = Depends(get_health_checks),
):
    services = await health_service.run_checks(checks)
    status, code = health_service.overall_status(services)
    return JSONResponse(
        status_code=code,
        content={
            "status": status,
            "timestamp": utc_now_iso(),
            "uptime": _uptime(),
            "services": services,
            "streaming": registry.stats(),
        },
    )
