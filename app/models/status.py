from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def flatten_description(value: Any) -> str:
    """
    Turn a status description (plain string or chat component) into text.

    Chat components are dicts with a ``text`` key and an optional ``extra``
    list of further components; lists of components are concatenated.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "".join(flatten_description(item) for item in value)
    if isinstance(value, dict):
        text = value.get("text", "")
        parts = [text if isinstance(text, str) else str(text)]
        for extra in value.get("extra") or []:
            parts.append(flatten_description(extra))
        return "".join(parts)
    return str(value)


class PlayerSample(BaseModel):
    """One entry of the player sample a server volunteers in its status."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Player name")
    id: str = Field("", description="Player UUID as sent by the server")


class VersionInfo(BaseModel):
    name: str = Field("Unknown", description="Version name, e.g. 1.20.1")
    protocol: int = Field(0, description="Protocol number the server speaks")


class PlayersInfo(BaseModel):
    online: int = Field(0, description="Players currently online")
    max: int = Field(0, description="Player slots")
    sample: List[PlayerSample] = Field(
        default_factory=list,
        description="Optional subset of online players",
    )

    @field_validator("online", "max", mode="before")
    @classmethod
    def _count_none_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("sample", mode="before")
    @classmethod
    def _sample_none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class StatusResponseBody(BaseModel):
    """Structured view of the JSON document in a status response packet."""

    version: VersionInfo = Field(default_factory=VersionInfo)
    players: Optional[PlayersInfo] = Field(
        None,
        description="Population block; a server without it is not considered online.",
    )
    description: str = Field("", description="Server MOTD flattened to plain text")
    favicon: Optional[str] = Field(None, description="PNG data URI, if the server has one")

    @field_validator("description", mode="before")
    @classmethod
    def _flatten_description(cls, value: Any) -> str:
        return flatten_description(value)

    @field_validator("version", mode="before")
    @classmethod
    def _version_none_is_default(cls, value: Any) -> Any:
        return {} if value is None else value


class ProbeResult(BaseModel):
    """Outcome of probing a single target once."""

    model_config = ConfigDict(frozen=True)

    target_id: int = Field(..., description="Id of the probed target")
    name: str = Field(..., description="Display name of the target")
    address: str = Field(..., description="Hostname or IP as configured")
    port: int = Field(..., ge=1, le=65535)
    fingerprint: str = Field(..., description="Short hash of address:port")
    category: str = Field("uncategorized")
    description: str = Field("", description="Operator-provided description of the target")
    online: bool = Field(..., description="True if a valid status response was received")
    error: Optional[str] = Field(
        None,
        description="Failure kind: timeout, connect-error, parse-error or closed-prematurely",
    )
    error_detail: Optional[str] = Field(None, description="Human-readable failure message")
    ping_ms: Optional[int] = Field(None, ge=0, description="Time until the TCP connect succeeded")
    latency_ms: Optional[int] = Field(
        None, ge=0, description="Time until the full status response was parsed"
    )
    version: Optional[str] = None
    protocol_number: Optional[int] = None
    players_online: int = Field(0, ge=0)
    players_max: int = Field(0, ge=0)
    player_sample: List[PlayerSample] = Field(default_factory=list)
    motd: str = ""
    favicon: Optional[str] = None
    observed_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _online_xor_error(self) -> "ProbeResult":
        if self.online and self.error is not None:
            raise ValueError("an online result cannot carry an error")
        if not self.online and self.error is None:
            raise ValueError("an offline result must carry an error")
        return self


class FleetSnapshot(BaseModel):
    """Ranked results of one fleet-wide probe run plus their aggregates."""

    model_config = ConfigDict(frozen=True)

    results: List[ProbeResult] = Field(default_factory=list)
    total: int = Field(0, ge=0)
    online_count: int = Field(0, ge=0)
    total_players: int = Field(0, ge=0)
    generated_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_results(cls, results: List[ProbeResult]) -> "FleetSnapshot":
        online = [r for r in results if r.online]
        return cls(
            results=list(results),
            total=len(results),
            online_count=len(online),
            total_players=sum(r.players_online for r in online),
        )
