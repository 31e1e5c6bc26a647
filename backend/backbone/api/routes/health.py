"""Health & Connection Diagnostics — liveness, readiness, and data-layer introspection.

Invariants:
    - GET /health/ always returns 200 if process is up (liveness)
    - GET /health/ready returns 503 unless the connection monitor reports CONNECTED
    - Diagnostics are read-only except POST /connection/reconnect

Design Decisions:
    - Readiness reads the monitor's status instead of probing: no extra load per request
    - DataLayer resolved from app.state via dependency, overridable in tests
"""

import logging
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from backbone.core.errors import DataLayerNotReadyError, ResourceNotFoundError
from backbone.services.data_layer import DataLayer

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/health", tags=["health"])


def get_data_layer(request: Request) -> DataLayer:
    layer = getattr(request.app.state, "data_layer", None)
    if layer is None:
        raise DataLayerNotReadyError()
    return layer


@router.get("/", status_code=status.HTTP_200_OK)
async def health_check():
    """Basic liveness probe. Returns 200 if the process is up."""
    return {
        "status": "healthy",
        "service": "lms-backbone",
        "version": "1.0.0",
    }


@router.get("/ready")
async def readiness_check(layer: DataLayer = Depends(get_data_layer)):
    """Readiness probe — backing service must be reachable."""
    connection = layer.monitor.status
    if not layer.monitor.is_connected:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "reason": "backing_service_unavailable",
                "connection": connection.value,
            },
        )
    return {"status": "ready", "checks": {"backing_service": connection.value}}


@router.get("/connection")
async def connection_status(layer: DataLayer = Depends(get_data_layer)):
    """Connection monitor and subscription overview."""
    last = layer.monitor.last_health_check
    return {
        "status": layer.monitor.status.value,
        "reconnect_attempts": layer.monitor.reconnect_attempts,
        "last_health_check": last.to_dict() if last else None,
        "active_subscriptions": layer.subscriptions.get_active_subscription_count(),
    }


@router.post("/connection/reconnect")
async def force_reconnect(layer: DataLayer = Depends(get_data_layer)):
    """Reset the attempt counter and run a reconnection sequence now."""
    logger.info(
        "Reconnect requested via API", extra={"status": layer.monitor.status.value},
    )
    await layer.monitor.reconnect()
    return {"status": layer.monitor.status.value}


@router.get("/subscriptions/{subscription_id}")
async def subscription_status(
    subscription_id: str, layer: DataLayer = Depends(get_data_layer),
):
    """Status of one subscription record."""
    found = layer.subscriptions.get_subscription_status(subscription_id)
    if found is None:
        raise ResourceNotFoundError("Subscription", subscription_id)
    return {"id": subscription_id, **found.to_dict()}


@router.get("/notices")
async def recent_notices(
    limit: int = Query(default=20, ge=0, le=500), layer: DataLayer = Depends(get_data_layer),
):
    """Most recent user-facing notices, newest last."""
    return {"notices": [n.to_dict() for n in layer.notices.recent(limit)]}
