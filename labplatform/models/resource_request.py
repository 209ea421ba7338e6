"""Resource request model."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, id_column

if TYPE_CHECKING:
    from .infra import Credential, Region, TerraformModule, TerraformProvider, Zone
    from .node_config import NodeConfig
    from .resource import Resource


class RequestStatus(str, Enum):
    """Resource request lifecycle."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROVISIONING = "provisioning"
    COMPLETED = "completed"
    FAILED = "failed"


class ProvisioningStage(str, Enum):
    """Step of the provisioning sequence a failure happened in."""

    PREPARE = "prepare"
    INIT = "init"
    PLAN = "plan"
    APPLY = "apply"
    FINALIZE = "finalize"
    DESTROY = "destroy"


class ResourceRequest(Base):
    """A user's request for a compute resource, subject to approval."""

    __tablename__ = "resource_requests"

    id: Mapped[str] = id_column()
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(50), default="vm")
    environment: Mapped[str] = mapped_column(String(50), default="dev")
    provider: Mapped[str] = mapped_column(String(50))
    spec: Mapped[dict] = mapped_column(JSON, default=dict)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(
        String(20), default=RequestStatus.PENDING.value, index=True
    )

    requester_id: Mapped[str] = mapped_column(String(64), index=True)
    approver_id: Mapped[Optional[str]] = mapped_column(String(64))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    reason: Mapped[Optional[str]] = mapped_column(Text)

    error_message: Mapped[Optional[str]] = mapped_column(Text)
    failed_stage: Mapped[Optional[str]] = mapped_column(String(20))
    provision_log: Mapped[Optional[str]] = mapped_column(Text)
    provision_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    provision_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    region_id: Mapped[Optional[str]] = mapped_column(ForeignKey("regions.id"))
    zone_id: Mapped[Optional[str]] = mapped_column(ForeignKey("zones.id"))
    tf_provider_id: Mapped[Optional[str]] = mapped_column(ForeignKey("terraform_providers.id"))
    tf_module_id: Mapped[Optional[str]] = mapped_column(ForeignKey("terraform_modules.id"))
    credential_id: Mapped[Optional[str]] = mapped_column(ForeignKey("credentials.id"))
    # At most one Resource per request
    resource_id: Mapped[Optional[str]] = mapped_column(ForeignKey("resources.id"), unique=True)

    region: Mapped[Optional["Region"]] = relationship()
    zone: Mapped[Optional["Zone"]] = relationship()
    tf_provider: Mapped[Optional["TerraformProvider"]] = relationship()
    tf_module: Mapped[Optional["TerraformModule"]] = relationship()
    credential: Mapped[Optional["Credential"]] = relationship()
    resource: Mapped[Optional["Resource"]] = relationship()
    node_config: Mapped[Optional["NodeConfig"]] = relationship(
        back_populates="resource_request", uselist=False
    )
