"""IP address management models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, id_column


class IPPoolStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class IPAllocationStatus(str, Enum):
    """Per-address reservation state."""

    AVAILABLE = "available"
    RESERVED = "reserved"  # Held for an in-flight request
    ALLOCATED = "allocated"  # Bound to a provisioned resource


class IPPool(Base):
    """A managed address range inside a CIDR."""

    __tablename__ = "ip_pools"

    id: Mapped[str] = id_column()
    name: Mapped[str] = mapped_column(String(100))
    cidr: Mapped[str] = mapped_column(String(50))
    gateway: Mapped[str] = mapped_column(String(45))
    dns: Mapped[Optional[str]] = mapped_column(String(255))
    vlan_tag: Mapped[Optional[int]] = mapped_column(Integer)
    start_ip: Mapped[str] = mapped_column(String(45))
    end_ip: Mapped[str] = mapped_column(String(45))
    zone_id: Mapped[Optional[str]] = mapped_column(ForeignKey("zones.id"), index=True)
    status: Mapped[str] = mapped_column(String(20), default=IPPoolStatus.ACTIVE.value)
    description: Mapped[Optional[str]] = mapped_column(Text)


class IPAllocation(Base):
    """One tracked address. Released rows go back to available, never deleted."""

    __tablename__ = "ip_allocations"
    __table_args__ = (UniqueConstraint("pool_id", "ip_address", name="uq_ip_allocation_address"),)

    id: Mapped[str] = id_column()
    pool_id: Mapped[str] = mapped_column(ForeignKey("ip_pools.id"), index=True)
    ip_address: Mapped[str] = mapped_column(String(45))
    status: Mapped[str] = mapped_column(String(20), default=IPAllocationStatus.AVAILABLE.value)
    hostname: Mapped[Optional[str]] = mapped_column(String(255))
    resource_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    allocated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
