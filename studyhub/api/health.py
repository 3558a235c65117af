"""
Health and diagnostics API.

Lightweight endpoints for operational monitoring without exposing secrets.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from studyhub.core.auth import get_services
from studyhub.core.config import missing_config

logger = logging.getLogger("studyhub")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request):
    """Readiness check: entitlement store reachable and configuration complete."""
    services = get_services(request)
    store_ok = services.store.ping()
    missing = missing_config(services.settings)
    ready = store_ok and not missing
    if not ready:
        logger.warning("readyz.not_ready", extra={"store_ok": store_ok, "missing": ",".join(missing)})
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"ready": ready, "store": store_ok, "missing_config": missing},
    )
