"""
Data Models Module

Pydantic response models for the gateway's system endpoints and error
responses.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# System Models
# ============================================================================

class RootResponse(BaseModel):
    """Service identification returned by ``/``."""
    service: str = Field(default="fwda", description="Service name")
    version: str = Field(..., description="Service version")
    status: str = Field(default="running", description="Service status")


class HealthResponse(BaseModel):
    """Liveness and loaded-portal summary returned by ``/health``."""
    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(default="healthy", description="Service health")
    portals: int = Field(..., description="Number of configured portals")
    portal_names: List[str] = Field(
        default_factory=list,
        alias="portalNames",
        description="Configured portal names",
    )


# ============================================================================
# Error Models
# ============================================================================

class ProblemDetails(BaseModel):
    """RFC 7807 problem document (``application/problem+json``)."""
    type: str = Field(default="about:blank", description="Problem type URI")
    title: str = Field(..., description="Short summary of the problem")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Explanation specific to this occurrence")
