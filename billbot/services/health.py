"""Dependency checks behind the health endpoints."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

import openai

from billbot.config import settings
from billbot.services import supabase as db

CHECK_TIMEOUT_SECONDS = 5.0

Check = Callable[[], Awaitable[None]]


def configuration_problems() -> list[str]:
    problems = []
    if not settings.openrouter_api_key:
        problems.append("OPENROUTER_API_KEY is not set")
    if not settings.supabase_url or not settings.supabase_service_key:
        problems.append("SUPABASE_URL and SUPABASE_SERVICE_KEY are not set")
    if not settings.embedding_api_key:
        problems.append("EMBEDDING_API_KEY is not set")
    return problems


async def check_openrouter() -> None:
    if not settings.openrouter_api_key:
        raise RuntimeError("OpenRouter not configured")
    client = openai.AsyncOpenAI(api_key=settings.openrouter_api_key, base_url=settings.openrouter_base_url)
    try:
        await client.models.list()
    finally:
        await client.close()


async def check_database() -> None:
    await db.ping()


DEFAULT_CHECKS: dict[str, Check] = {
    "openrouter": check_openrouter,
    "database": check_database,
}


async def run_check(check: Check, timeout: float = CHECK_TIMEOUT_SECONDS) -> dict[str, Any]:
    t0 = time.monotonic()
    try:
        await asyncio.wait_for(check(), timeout=timeout)
    except Exception as exc:
        return {
            "status": "down",
            "error": str(exc) or type(exc).__name__,
            "response_time": int((time.monotonic() - t0) * 1000),
        }
    return {"status": "up", "response_time": int((time.monotonic() - t0) * 1000)}


async def run_checks(checks: dict[str, Check]) -> dict[str, dict[str, Any]]:
    names = list(checks)
    outcomes = await asyncio.gather(*(run_check(checks[name]) for name in names))
    return dict(zip(names, outcomes))


def overall_status(services: dict[str, dict[str, Any]]) -> tuple[str, int]:
    """One service down is degraded (207); more than one is unhealthy (503)."""
    down = sum(1 for s in services.values() if s["status"] != "up")
    if down == 0:
        return "healthy", 200
    if down == 1:
        return "degraded", 207
    return "unhealthy", 503
