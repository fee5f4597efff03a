"""
Health check endpoints for the private sessions service.
"""

import time

from fastapi import APIRouter, Request

from app.infrastructure.observability.logging import log_health_check
from app.infrastructure.queue.jobs import JobName

router = APIRouter()


@router.get("/healthz")
async def healthz(request: Request):
    """Basic health check - always returns 200 if the app is running."""
    return {"status": "ok", "service": request.app.state.container.settings.SERVICE_NAME}


@router.get("/readyz")
async def readyz(request: Request):
    """Readiness check covering the database pool and the job queue."""
    container = request.app.state.container
    checks = {}

    t0 = time.time()
    db_health = await container.db_pool.health_check()
    latency_ms = round((time.time() - t0) * 1000, 1)
    checks["database"] = {"ok": bool(db_health.get("healthy")), "latency_ms": latency_ms}
    if "pool_stats" in db_health:
        checks["database"]["pool_stats"] = db_health["pool_stats"]
    if not checks["database"]["ok"]:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    log_health_check("database", checks["database"]["ok"], latency_ms, db_health.get("error"))

    t0 = time.time()
    if container.queue is None:
        queue_health = {"healthy": False, "error": "Queue not initialized"}
    else:
        queue_health = await container.queue.health_check([name.value for name in JobName])
    latency_ms = round((time.time() - t0) * 1000, 1)
    checks["queue"] = {"ok": bool(queue_health.get("healthy")), "latency_ms": latency_ms}
    if "queues" in queue_health:
        checks["queue"]["queues"] = queue_health["queues"]
    if not checks["queue"]["ok"]:
        checks["queue"]["error"] = queue_health.get("error", "Queue unhealthy")
    log_health_check("job_queue", checks["queue"]["ok"], latency_ms, queue_health.get("error"))

    overall_ok = all(check["ok"] for check in checks.values())
    return {"overall_ok": overall_ok, "checks": checks}
