import time

import psutil

from app.config import get_settings
from app.models.health import HealthStatus


def get_health_status() -> HealthStatus:
    """
    Collect process figures and return them as a HealthStatus domain object.

    All psutil calls live here so the API layer only returns the model.
    """
    process = psutil.Process()
    uptime_seconds = int(time.time() - process.create_time())

    return HealthStatus(
        uptime_seconds=max(uptime_seconds, 0),
        memory_rss_bytes=process.memory_info().rss,
        servers_file=get_settings().servers_file,
    )
