from pydantic import BaseModel, Field


class HealthStatus(BaseModel):
    """Liveness information about the monitor process itself."""

    status: str = Field("ok", description="Always 'ok' while the process serves requests")
    uptime_seconds: int = Field(
        ...,
        ge=0,
        description="Number of seconds since the monitor process was started",
    )
    memory_rss_bytes: int = Field(
        ...,
        ge=0,
        description="Resident set size of the monitor process",
    )
    servers_file: str = Field(..., description="Path of the configured server list")
