"""Database models package."""

from .base import Base, new_id, utcnow
from .infra import (
    Credential,
    GitAuthType,
    GitRepository,
    GitRepoType,
    Region,
    TerraformModule,
    TerraformProvider,
    TerraformRegistry,
    Zone,
)
from .ipam import IPAllocation, IPAllocationStatus, IPPool, IPPoolStatus
from .node_config import NodeConfig, NodeConfigStatus
from .resource import Resource, ResourceStatus
from .resource_request import ProvisioningStage, RequestStatus, ResourceRequest

__all__ = [
    "Base",
    "new_id",
    "utcnow",
    "Credential",
    "GitAuthType",
    "GitRepository",
    "GitRepoType",
    "Region",
    "TerraformModule",
    "TerraformProvider",
    "TerraformRegistry",
    "Zone",
    "IPAllocation",
    "IPAllocationStatus",
    "IPPool",
    "IPPoolStatus",
    "NodeConfig",
    "NodeConfigStatus",
    "Resource",
    "ResourceStatus",
    "ProvisioningStage",
    "RequestStatus",
    "ResourceRequest",
]
