"""Provisioned resource model."""

from enum import Enum
from typing import Optional

from sqlalchemy import JSON, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, id_column


class ResourceStatus(str, Enum):
    RUNNING = "running"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"


class Resource(Base):
    """Resource model - an artifact created by a successful provisioning run."""

    __tablename__ = "resources"

    id: Mapped[str] = id_column()
    name: Mapped[str] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(50))
    provider: Mapped[str] = mapped_column(String(50))
    environment: Mapped[str] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(20), default=ResourceStatus.RUNNING.value)
    outputs: Mapped[dict] = mapped_column(JSON, default=dict)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(255))
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    hostname: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)

    region_id: Mapped[Optional[str]] = mapped_column(ForeignKey("regions.id"))
    zone_id: Mapped[Optional[str]] = mapped_column(ForeignKey("zones.id"))
