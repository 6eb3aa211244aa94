from fastapi import APIRouter

from app.models.health import HealthStatus
from app.services import health_monitor

router = APIRouter()


@router.get("", response_model=HealthStatus, summary="Monitor health")
async def health() -> HealthStatus:
    """
    Return liveness information about the monitor process.

    This endpoint does not probe any game server, so it stays fast even
    when the whole fleet is unreachable.
    """
    return health_monitor.get_health_status()
