import logging
import resource
import sys
import time
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from edge_proxy.vars import SERVICE_VERSION

router = APIRouter(prefix="/api")

logger = logging.getLogger("uvicorn.error")

_STARTED = time.monotonic()

# Peak RSS above this is reported as a warning
MEMORY_WARNING_MB = 512


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _memory_status() -> str:
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS and kilobytes elsewhere
    peak_mb = peak / (1024 * 1024) if sys.platform == "darwin" else peak / 1024
    return "warning" if peak_mb > MEMORY_WARNING_MB else "ok"


@router.get("/health")
async def health(request: Request):
    """Liveness for the edge itself; never forwarded upstream."""
    config = request.app.state.config
    checks = {"server": "ok", "memory": _memory_status()}
    status = "unhealthy" if "error" in checks.values() else "healthy"
    return JSONResponse(
        {
            "status": status,
            "timestamp": _now(),
            "uptime": round(time.monotonic() - _STARTED, 3),
            "version": SERVICE_VERSION,
            "environment": config.environment.value,
            "checks": checks,
        },
        status_code=200 if status == "healthy" else 503,
    )


@router.get("/uuid/generate")
async def generate_uuid(response: Response):
    response.headers["Cache-Control"] = "no-store"
    return {"uuid": str(uuid.uuid4()), "timestamp": _now()}
