"""Per-provider VM spec schemas.

A request's spec is stored as an opaque JSON object. Before anything is
rendered it is validated against the model registered for the request's
provider, which fills in explicit defaults. Unknown keys are kept so that
module-based deployments can pass arbitrary inputs through.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from labplatform.errors import InvalidInputError

PROVIDER_PVE = "pve"
PROVIDER_VMWARE = "vmware"
PROVIDER_OPENSTACK = "openstack"

SUPPORTED_PROVIDERS = frozenset(
    {PROVIDER_PVE, PROVIDER_VMWARE, PROVIDER_OPENSTACK, "aws", "aliyun", "gcp", "azure"}
)

# Keys every spec understands regardless of provider
GENERIC_KEYS = ("cpu", "memory", "disk", "name", "network", "os_image")


class VMSpec(BaseModel):
    """Generic VM spec shared by all providers."""

    model_config = ConfigDict(extra="allow")

    cpu: int = Field(default=2, ge=1, description="vCPU count")
    memory: int = Field(default=4096, ge=128, description="Memory in MB")
    disk: int = Field(default=50, ge=1, description="Disk size in GB")
    name: str | None = Field(default=None, min_length=1, max_length=63)
    network: str | None = None
    os_image: str | None = None

    def provider_fields(self) -> dict[str, Any]:
        """Declared fields specific to the provider subclass."""
        generic = set(VMSpec.model_fields)
        return {
            key: getattr(self, key)
            for key in type(self).model_fields
            if key not in generic and getattr(self, key) is not None
        }

    def extra_fields(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class PVESpec(VMSpec):
    target_node: str = "pve"
    template_name: str = "ubuntu-template"
    storage_pool: str = "local-lvm"
    network_bridge: str = "vmbr0"


class VMwareSpec(VMSpec):
    datacenter: str = "Datacenter"
    cluster: str = "Cluster"
    datastore: str = "datastore1"
    template_name: str = "ubuntu-template"


class OpenStackSpec(VMSpec):
    network: str | None = "private"
    os_image: str | None = "ubuntu-22.04"
    flavor_name: str = "m1.small"
    tenant_name: str | None = None
    region: str = "RegionOne"
    key_pair: str | None = None


SPEC_MODELS: dict[str, type[VMSpec]] = {
    PROVIDER_PVE: PVESpec,
    PROVIDER_VMWARE: VMwareSpec,
    PROVIDER_OPENSTACK: OpenStackSpec,
}


def parse_spec(provider: str, raw: dict[str, Any] | None) -> VMSpec:
    """Validate a raw spec for the given provider.

    Raises:
        InvalidInputError: If the provider is unknown or the spec is malformed.
    """
    if provider not in SUPPORTED_PROVIDERS:
        raise InvalidInputError(f"unsupported provider: {provider}")

    model = SPEC_MODELS.get(provider, VMSpec)
    try:
        return model.model_validate(raw or {})
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidInputError(f"invalid {provider} spec: {errors}") from e
