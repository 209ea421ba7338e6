"""Version-controlled node configuration model."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, id_column

if TYPE_CHECKING:
    from .resource_request import ResourceRequest


class NodeConfigStatus(str, Enum):
    """Mirrors provisioning progress of the owning request."""

    PENDING = "pending"
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    FAILED = "failed"
    DESTROYED = "destroyed"


class NodeConfig(Base):
    """Generated configuration artifact, one per resource request."""

    __tablename__ = "node_configs"

    id: Mapped[str] = id_column()
    name: Mapped[str] = mapped_column(String(255))
    # Path relative to the repository base path
    path: Mapped[str] = mapped_column(String(500))
    resource_request_id: Mapped[str] = mapped_column(
        ForeignKey("resource_requests.id"), unique=True
    )
    storage_repo_id: Mapped[Optional[str]] = mapped_column(ForeignKey("git_repositories.id"))

    # main.tf or terragrunt.hcl
    descriptor_name: Mapped[str] = mapped_column(String(64))
    rendered_config: Mapped[str] = mapped_column(Text, default="")
    variables: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default=NodeConfigStatus.PENDING.value)

    pending_commit_sha: Mapped[Optional[str]] = mapped_column(String(64))
    applied_commit_sha: Mapped[Optional[str]] = mapped_column(String(64))

    provision_log: Mapped[Optional[str]] = mapped_column(Text)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    provisioned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    destroyed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    resource_request: Mapped["ResourceRequest"] = relationship(back_populates="node_config")
