"""Resource request DTOs."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class ResourceRequestCreate(BaseModel):
    """Input for a new resource request."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    type: str = Field(default="vm", min_length=1, max_length=50)
    environment: str = Field(default="dev", min_length=1, max_length=50)
    provider: str = Field(..., min_length=1, max_length=50)
    spec: dict[str, Any] = Field(default_factory=dict)
    quantity: int = Field(default=1, ge=1)
    requester_id: str = Field(..., min_length=1)

    region_id: str | None = None
    zone_id: str | None = None
    tf_provider_id: str | None = None
    tf_module_id: str | None = None
    credential_id: str | None = None


class ResourceRequestDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str | None = None
    type: str
    environment: str
    provider: str
    spec: dict[str, Any]
    quantity: int
    status: str
    requester_id: str
    approver_id: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    reason: str | None = None
    error_message: str | None = None
    failed_stage: str | None = None
    provision_started_at: datetime | None = None
    provision_completed_at: datetime | None = None
    zone_id: str | None = None
    resource_id: str | None = None


class ResourceDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: str
    provider: str
    environment: str
    status: str
    outputs: dict[str, str]
    owner_id: str
    external_id: str | None = None
    ip_address: str | None = None
    hostname: str | None = None


class Page(BaseModel):
    """One page of resource requests."""

    items: list[ResourceRequestDTO]
    total: int
    page: int
    page_size: int
