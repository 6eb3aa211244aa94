import logging
import os
from functools import lru_cache

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _int_from_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using default %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning(
            "Ignoring %s=%s below minimum %s, using default %s", name, value, minimum, default
        )
        return default
    return value


class Settings(BaseModel):
    # Target store
    servers_file: str = Field(
        default="servers.json",
        description="Path of the JSON file holding the configured servers",
    )

    # Probe budget: first byte within timeout, give up entirely after the grace
    probe_timeout_ms: int = Field(
        default=5000,
        gt=0,
        description="Time budget in milliseconds for connect plus response",
    )
    probe_grace_ms: int = Field(
        default=1000,
        ge=0,
        description="Extra milliseconds before a probe is abandoned as timed out",
    )
    protocol_version: int = Field(
        default=763,
        ge=0,
        description="Protocol number announced in the handshake (763 = 1.20.1)",
    )
    resolve_hostnames: bool = Field(
        default=True,
        description="Resolve hostnames before connecting; failures fall back to the raw name",
    )
    max_concurrent_probes: int = Field(
        default=32,
        gt=0,
        description="Upper bound on simultaneously open probe sockets",
    )

    # Snapshot cache
    cache_ttl_ms: int = Field(
        default=30000,
        ge=0,
        description="How long a fleet snapshot is served from cache",
    )

    log_level: str = Field(default="INFO", description="Root log level")

    @property
    def probe_deadline_seconds(self) -> float:
        return (self.probe_timeout_ms + self.probe_grace_ms) / 1000.0

    @classmethod
    def from_env(cls) -> "Settings":
        resolve_raw = os.getenv("RESOLVE_HOSTNAMES")
        resolve_hostnames = (
            True if resolve_raw is None else resolve_raw.strip().lower() in _TRUE_VALUES
        )

        return cls(
            servers_file=os.getenv("SERVERS_FILE", "servers.json"),
            probe_timeout_ms=_int_from_env("PROBE_TIMEOUT_MS", 5000, minimum=1),
            probe_grace_ms=_int_from_env("PROBE_GRACE_MS", 1000),
            protocol_version=_int_from_env("PROTOCOL_VERSION", 763),
            resolve_hostnames=resolve_hostnames,
            max_concurrent_probes=_int_from_env("MAX_CONCURRENT_PROBES", 32, minimum=1),
            cache_ttl_ms=_int_from_env("CACHE_TTL_MS", 30000),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
