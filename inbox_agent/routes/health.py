"""
Liveness and readiness checks.

/readyz reports Redis and the Postgres pool; missing capability settings are
listed under "configuration" but do not fail readiness, since the workflow
degrades per stage without them.
"""

import time
from typing import Any

from fastapi import APIRouter

from inbox_agent.config import settings
from inbox_agent.db.pool import db_health_check
from inbox_agent.infrastructure.observability.logging import log_health_check
from inbox_agent.services.infrastructure.redis_client import fast_redis

router = APIRouter()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


async def _check_redis() -> dict[str, Any]:
    started = time.perf_counter()
    try:
        ok = bool(await fast_redis.ping())
    except Exception as e:
        return {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": _elapsed_ms(started),
        }
    return {"ok": ok, "latency_ms": _elapsed_ms(started)}


async def _check_database() -> dict[str, Any]:
    started = time.perf_counter()
    try:
        report = await db_health_check()
    except Exception as e:
        return {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": _elapsed_ms(started),
        }

    check = {"ok": bool(report.get("healthy")), "latency_ms": _elapsed_ms(started)}
    if "pool_stats" in report:
        check["pool_stats"] = report["pool_stats"]
    if not check["ok"]:
        check["error"] = report.get("error", "Database unhealthy")
    return check


def _configuration_issues() -> list[str]:
    required = {
        "OPENAI_API_KEY": settings.OPENAI_API_KEY,
        "FAQ_SERVICE_URL": settings.FAQ_SERVICE_URL,
        "PUSH_GATEWAY_URL": settings.PUSH_GATEWAY_URL,
    }
    return [f"{name} not set" for name, value in required.items() if not value]


@router.get("/healthz")
async def healthz():
    return {"status": "ok", "service": "inbox-agent"}


@router.get("/readyz")
async def readyz():
    checks = {"redis": await _check_redis(), "database": await _check_database()}
    for service, check in checks.items():
        log_health_check(service, check["ok"], check["latency_ms"], check.get("error"))

    issues = _configuration_issues()
    checks["configuration"] = {
        "ok": not issues,
        "issues": issues or None,
        "environment": settings.environment,
    }

    return {
        "overall_ok": checks["redis"]["ok"] and checks["database"]["ok"],
        "checks": checks,
        "timestamp": time.time(),
    }
