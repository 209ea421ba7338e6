"""Render a resource request into Terraform or Terragrunt configuration.

Two output modes:

* raw: no module selected. A provider-native ``main.tf`` plus a
  ``terraform.tfvars`` whose keys come from a fixed per-provider table.
* module: ``terragrunt.hcl`` pointing at the rewritten module source, with
  generic ``inputs``.

Every render can be produced with or without credential material. The
credential-free render is the one persisted and committed to git.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import structlog

from labplatform.errors import InvalidInputError
from labplatform.schemas.spec import (
    GENERIC_KEYS,
    PROVIDER_OPENSTACK,
    PROVIDER_PVE,
    PROVIDER_VMWARE,
    VMSpec,
)

from .hcl import format_assignments, format_module_source, format_value, render_terraformrc
from .templates import MAIN_TF_TEMPLATES

logger = structlog.get_logger(__name__)

MAIN_TF = "main.tf"
TFVARS = "terraform.tfvars"
TERRAGRUNT_HCL = "terragrunt.hcl"
TERRAFORMRC = ".terraformrc"

# Generic spec key -> provider variable name
GENERIC_KEY_MAP: dict[str, dict[str, str]] = {
    PROVIDER_PVE: {
        "cpu": "cpu",
        "memory": "memory",
        "disk": "disk",
        "name": "vm_name",
        "network": "network",
        "os_image": "os_image",
    },
    PROVIDER_VMWARE: {
        "cpu": "num_cpus",
        "memory": "memory",
        "disk": "disk_size",
        "name": "vm_name",
        "network": "network",
        "os_image": "os_image",
    },
    PROVIDER_OPENSTACK: {
        "cpu": "vcpus",
        "memory": "ram_mb",
        "disk": "disk_gb",
        "name": "instance_name",
        "network": "network_name",
        "os_image": "image_name",
    },
}

# (endpoint, username, password) variable names
CREDENTIAL_KEY_MAP: dict[str, tuple[str, str, str]] = {
    PROVIDER_PVE: ("proxmox_api_url", "proxmox_user", "proxmox_password"),
    PROVIDER_VMWARE: ("vsphere_server", "vsphere_user", "vsphere_password"),
    PROVIDER_OPENSTACK: ("openstack_auth_url", "openstack_user", "openstack_password"),
}


@dataclass
class CredentialMaterial:
    """Provider API credentials drawn from a Credential row."""

    endpoint: str | None = None
    username: str | None = None
    password: str | None = None
    token: str | None = None

    def __repr__(self) -> str:
        return f"CredentialMaterial(endpoint={self.endpoint!r}, username={self.username!r})"


@dataclass
class NetworkAssignment:
    """Static addressing reserved from IPAM."""

    ip_address: str
    prefix_length: int | None = None
    gateway: str | None = None
    dns: str | None = None

    def as_variables(self) -> dict[str, Any]:
        values = {
            "ip_address": self.ip_address,
            "ip_prefix_length": self.prefix_length,
            "gateway": self.gateway,
            "dns_servers": self.dns,
        }
        return {k: v for k, v in values.items() if v is not None}


@dataclass
class RenderInput:
    provider: str
    environment: str
    spec: VMSpec
    module_source: str | None = None
    module_version: str | None = None
    credentials: CredentialMaterial | None = None
    registry_endpoint: str | None = None
    registry_token: str | None = field(default=None, repr=False)
    network: NetworkAssignment | None = None


@dataclass
class GeneratedConfig:
    mode: Literal["raw", "module"]
    descriptor_name: str
    descriptor: str
    variables: str
    terraformrc: str | None = field(default=None, repr=False)
    module_source: str | None = None

    def files(self) -> dict[str, str]:
        """Filename -> content for everything the executor needs on disk."""
        if self.mode == "raw":
            files = {MAIN_TF: self.descriptor, TFVARS: self.variables}
        else:
            files = {TERRAGRUNT_HCL: self.descriptor}
        if self.terraformrc:
            files[TERRAFORMRC] = self.terraformrc
        return files

    def write(self, work_dir: Path) -> list[Path]:
        """Write all files into work_dir, removing a stale descriptor of the other mode."""
        work_dir.mkdir(parents=True, exist_ok=True)
        stale = (TERRAGRUNT_HCL,) if self.mode == "raw" else (MAIN_TF, TFVARS)
        for name in stale:
            (work_dir / name).unlink(missing_ok=True)

        written = []
        for name, content in self.files().items():
            path = work_dir / name
            path.write_text(content)
            if name in (TFVARS, TERRAGRUNT_HCL, TERRAFORMRC):
                path.chmod(0o600)
            written.append(path)
        return written


class ConfigGenerator:
    """Renders request aggregates into tool-native configuration."""

    def render(self, data: RenderInput, include_credentials: bool = True) -> GeneratedConfig:
        if data.module_source:
            config = self._render_module(data, include_credentials)
        else:
            config = self._render_raw(data, include_credentials)

        if data.registry_endpoint:
            token = data.registry_token if include_credentials else None
            config.terraformrc = render_terraformrc(data.registry_endpoint, token)

        logger.debug(
            "config_rendered",
            mode=config.mode,
            provider=data.provider,
            environment=data.environment,
            module_source=config.module_source,
            with_credentials=include_credentials,
            registry_mirror=bool(data.registry_endpoint),
        )
        return config

    def _render_raw(self, data: RenderInput, include_credentials: bool) -> GeneratedConfig:
        template = MAIN_TF_TEMPLATES.get(data.provider)
        if template is None:
            raise InvalidInputError(
                f"provider {data.provider!r} has no built-in template; select a module"
            )

        variables: dict[str, Any] = {}
        if include_credentials and data.credentials:
            endpoint_key, user_key, password_key = CREDENTIAL_KEY_MAP[data.provider]
            creds = data.credentials
            for key, value in (
                (endpoint_key, creds.endpoint),
                (user_key, creds.username),
                (password_key, creds.password),
            ):
                if value:
                    variables[key] = value

        key_map = GENERIC_KEY_MAP[data.provider]
        for key, value in self._generic_values(data).items():
            variables[key_map[key]] = value
        variables.update(data.spec.provider_fields())
        if data.network:
            variables.update(data.network.as_variables())
        variables["environment"] = data.environment

        return GeneratedConfig(
            mode="raw",
            descriptor_name=MAIN_TF,
            descriptor=template,
            variables=format_assignments(variables),
        )

    def _render_module(self, data: RenderInput, include_credentials: bool) -> GeneratedConfig:
        source = format_module_source(data.module_source, data.module_version)

        inputs: dict[str, Any] = {}
        if include_credentials and data.credentials:
            creds = data.credentials
            for key, value in (
                ("api_endpoint", creds.endpoint),
                ("api_username", creds.username),
                ("api_password", creds.password),
                ("api_token", creds.token),
            ):
                if value:
                    inputs[key] = value

        inputs.update(self._generic_values(data))
        inputs.update(data.spec.provider_fields())
        inputs.update(data.spec.extra_fields())
        if data.network:
            inputs.update(data.network.as_variables())
        inputs["environment"] = data.environment

        descriptor = (
            "# Generated by labplatform\n"
            f"# Provider: {data.provider}\n"
            f"# Environment: {data.environment}\n"
            "\n"
            "terraform {\n"
            f"  source = {format_value(source)}\n"
            "}\n"
            "\n"
            "inputs = {\n"
            f"{format_assignments(inputs, indent='  ')}"
            "}\n"
        )
        return GeneratedConfig(
            mode="module",
            descriptor_name=TERRAGRUNT_HCL,
            descriptor=descriptor,
            variables=format_assignments(inputs),
            module_source=source,
        )

    @staticmethod
    def _generic_values(data: RenderInput) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for key in GENERIC_KEYS:
            value = getattr(data.spec, key)
            if key == "name" and not value:
                value = f"{data.environment}-vm"
            if value is not None:
                values[key] = value
        return values
