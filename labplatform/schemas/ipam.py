"""IPAM DTOs."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class IPPoolCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    cidr: str
    gateway: str
    start_ip: str
    end_ip: str
    dns: str | None = None
    vlan_tag: int | None = Field(default=None, ge=1, le=4094)
    zone_id: str | None = None
    description: str | None = None


class IPPoolDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    cidr: str
    gateway: str
    start_ip: str
    end_ip: str
    dns: str | None = None
    vlan_tag: int | None = None
    zone_id: str | None = None
    status: str


class IPAllocationDTO(BaseModel):
    """Address reservation within a pool."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    pool_id: str
    ip_address: str
    status: str
    hostname: str | None = None
    resource_id: str | None = None
    request_id: str | None = None
    allocated_at: datetime | None = None
