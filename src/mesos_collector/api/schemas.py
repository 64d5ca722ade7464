"""Pydantic schemas for control API request/response validation."""

from typing import Optional
from pydantic import BaseModel, Field, field_validator

from mesos_collector.registry.containers import validate_container_id


class ContainerRequest(BaseModel):
    """Request schema for POST /container."""

    container_id: str = Field(..., description="Mesos container id")
    statsd_host: Optional[str] = Field(
        None, description="Statsd listener host (defaults to the configured host)"
    )
    statsd_port: Optional[int] = Field(
        None, ge=0, le=65535, description="Statsd listener port (0 or unset for ephemeral)"
    )

    @field_validator("container_id")
    @classmethod
    def validate_container_id(cls, v):
        """Reject ids that cannot be used as a file name."""
        return validate_container_id(v)

    @field_validator("statsd_host")
    @classmethod
    def validate_statsd_host(cls, v):
        """Treat an empty host as unset."""
        if v is not None and not v.strip():
            return None
        return v


class ContainerResponse(BaseModel):
    """Response schema for a stored registration."""

    container_id: str
    statsd_host: str
    statsd_port: int = Field(..., gt=0, le=65535)
