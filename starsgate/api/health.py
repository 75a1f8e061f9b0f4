"""
Health endpoints.

Lightweight liveness checks for the process and, when entitlements are stored in a
database, for the database connection. No secrets are exposed.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from starsgate.core.database import check_connection
from starsgate.features.entitlements.store import SqlEntitlementStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request):
    """Readiness check: entitlement storage reachable."""
    store = request.app.state.store
    if isinstance(store, SqlEntitlementStore):
        if not check_connection(store.engine):
            logger.error("[readyz] entitlement database unreachable")
            return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
        return {"status": "ok", "storage": "database"}
    return {"status": "ok", "storage": "memory"}
