import stat

import pytest

from labplatform.errors import InvalidInputError
from labplatform.schemas import parse_spec
from labplatform.terraform import (
    ConfigGenerator,
    CredentialMaterial,
    NetworkAssignment,
    RenderInput,
)
from labplatform.terraform.generator import MAIN_TF, TERRAFORMRC, TERRAGRUNT_HCL, TFVARS


@pytest.fixture
def generator():
    return ConfigGenerator()


@pytest.fixture
def credentials():
    return CredentialMaterial(
        endpoint="https://pve.lab:8006/api2/json",
        username="root@pam",
        password="hunter2",
        token="tok-123",
    )


def pve_input(**overrides) -> RenderInput:
    values = {
        "provider": "pve",
        "environment": "dev",
        "spec": parse_spec("pve", {"cpu": 4, "memory": 8192, "name": "web-01"}),
    }
    values.update(overrides)
    return RenderInput(**values)


class TestRawMode:
    def test_pve_variables_use_provider_names(self, generator):
        config = generator.render(pve_input())

        assert config.mode == "raw"
        assert config.descriptor_name == MAIN_TF
        assert 'resource "proxmox_vm_qemu" "vm"' in config.descriptor
        assert 'vm_name = "web-01"' in config.variables
        assert "cpu = 4" in config.variables
        assert "memory = 8192" in config.variables
        assert 'target_node = "pve"' in config.variables
        assert 'environment = "dev"' in config.variables

    def test_openstack_key_mapping(self, generator):
        data = RenderInput(
            provider="openstack",
            environment="prod",
            spec=parse_spec("openstack", {"cpu": 2, "memory": 2048, "disk": 20}),
        )
        config = generator.render(data)

        assert "vcpus = 2" in config.variables
        assert "ram_mb = 2048" in config.variables
        assert "disk_gb = 20" in config.variables
        assert 'network_name = "private"' in config.variables
        assert 'image_name = "ubuntu-22.04"' in config.variables
        assert 'instance_name = "prod-vm"' in config.variables

    def test_credentials_only_when_requested(self, generator, credentials):
        with_creds = generator.render(pve_input(credentials=credentials))
        without = generator.render(pve_input(credentials=credentials), include_credentials=False)

        assert 'proxmox_password = "hunter2"' in with_creds.variables
        assert 'proxmox_user = "root@pam"' in with_creds.variables
        assert "hunter2" not in without.variables
        assert "proxmox_password" not in without.variables

    def test_network_assignment_rendered(self, generator):
        network = NetworkAssignment(
            ip_address="10.0.0.5", prefix_length=24, gateway="10.0.0.1", dns="1.1.1.1"
        )
        config = generator.render(pve_input(network=network))

        assert 'ip_address = "10.0.0.5"' in config.variables
        assert "ip_prefix_length = 24" in config.variables
        assert 'gateway = "10.0.0.1"' in config.variables

    def test_provider_without_template_needs_module(self, generator):
        data = RenderInput(provider="aws", environment="dev", spec=parse_spec("aws", {}))
        with pytest.raises(InvalidInputError, match="no built-in template"):
            generator.render(data)


class TestModuleMode:
    def test_terragrunt_descriptor(self, generator, credentials):
        data = pve_input(
            module_source="https://git.lab/infra/modules//vm/pve",
            module_version="v1.0.0",
            credentials=credentials,
        )
        config = generator.render(data)

        assert config.mode == "module"
        assert config.descriptor_name == TERRAGRUNT_HCL
        assert config.descriptor.startswith("# Generated by labplatform\n")
        assert 'source = "git::https://git.lab/infra/modules.git//vm/pve?ref=v1.0.0"' in (
            config.descriptor
        )
        assert '  api_password = "hunter2"' in config.descriptor
        assert '  name = "web-01"' in config.descriptor
        assert '  storage_pool = "local-lvm"' in config.descriptor

    def test_extra_spec_keys_pass_through(self, generator):
        spec = parse_spec("aws", {"instance_type": "t3.micro", "tags": {"team": "qa"}})
        data = RenderInput(
            provider="aws", environment="dev", spec=spec, module_source="./modules/ec2"
        )
        config = generator.render(data)

        assert 'instance_type = "t3.micro"' in config.descriptor
        assert 'tags = { "team" = "qa" }' in config.descriptor

    def test_credential_free_render(self, generator, credentials):
        data = pve_input(module_source="./modules/vm", credentials=credentials)
        config = generator.render(data, include_credentials=False)

        assert "api_password" not in config.descriptor
        assert "hunter2" not in config.descriptor


class TestRegistryMirror:
    def test_terraformrc_token_only_with_credentials(self, generator):
        data = pve_input(registry_endpoint="https://registry.lab", registry_token="reg-token")

        with_creds = generator.render(data)
        without = generator.render(data, include_credentials=False)

        assert TERRAFORMRC in with_creds.files()
        assert "reg-token" in with_creds.terraformrc
        assert "reg-token" not in without.terraformrc

    def test_no_terraformrc_without_registry(self, generator):
        assert TERRAFORMRC not in generator.render(pve_input()).files()


class TestWrite:
    def test_write_removes_stale_mode_and_restricts_permissions(self, generator, tmp_path):
        (tmp_path / TERRAGRUNT_HCL).write_text("stale")
        generator.render(pve_input()).write(tmp_path)

        assert not (tmp_path / TERRAGRUNT_HCL).exists()
        assert (tmp_path / MAIN_TF).is_file()
        assert stat.S_IMODE((tmp_path / TFVARS).stat().st_mode) == 0o600

    def test_module_write_removes_raw_files(self, generator, tmp_path):
        generator.render(pve_input()).write(tmp_path)
        generator.render(pve_input(module_source="./modules/vm")).write(tmp_path)

        assert (tmp_path / TERRAGRUNT_HCL).is_file()
        assert not (tmp_path / MAIN_TF).exists()
        assert not (tmp_path / TFVARS).exists()
