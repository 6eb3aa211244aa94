from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PORT = 25565
DEFAULT_CATEGORY = "uncategorized"


class Target(BaseModel):
    """A configured game server endpoint."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=1, description="Stable identifier assigned by the store")
    name: str = Field(..., min_length=1, description="Display name")
    address: str = Field(
        ...,
        min_length=1,
        description="Hostname or IP of the server, e.g. play.example.com",
    )
    port: int = Field(DEFAULT_PORT, ge=1, le=65535, description="TCP port")
    category: str = Field(DEFAULT_CATEGORY, description="Free-form grouping label")
    description: str = Field("", description="Operator notes shown next to the server")


class TargetCreate(BaseModel):
    """Request body for adding a target; the store assigns the id."""

    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    port: int = Field(DEFAULT_PORT, ge=1, le=65535)
    category: str = Field(DEFAULT_CATEGORY)
    description: str = Field("")


class TargetUpdate(BaseModel):
    """Partial update; only fields that are set get merged into the target."""

    name: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = Field(None, min_length=1)
    port: Optional[int] = Field(None, ge=1, le=65535)
    category: Optional[str] = None
    description: Optional[str] = None


class TargetChangeResponse(BaseModel):
    """Response body of add, update and delete calls."""

    success: bool = Field(True, description="True if the change was persisted")
    server: Target = Field(..., description="The target after the change (or the removed one)")
    message: str = Field("", description="Short human-readable summary")
