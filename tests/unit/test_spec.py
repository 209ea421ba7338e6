import pytest

from labplatform.errors import InvalidInputError
from labplatform.schemas import OpenStackSpec, PVESpec, VMSpec, parse_spec


class TestParseSpec:
    def test_pve_defaults_filled(self):
        spec = parse_spec("pve", {})

        assert isinstance(spec, PVESpec)
        assert spec.cpu == 2
        assert spec.memory == 4096
        assert spec.disk == 50
        assert spec.target_node == "pve"
        assert spec.storage_pool == "local-lvm"

    def test_openstack_overrides_generic_defaults(self):
        spec = parse_spec("openstack", None)

        assert isinstance(spec, OpenStackSpec)
        assert spec.network == "private"
        assert spec.os_image == "ubuntu-22.04"

    def test_cloud_providers_use_generic_model(self):
        spec = parse_spec("gcp", {"machine_type": "e2-small"})

        assert type(spec) is VMSpec
        assert spec.extra_fields() == {"machine_type": "e2-small"}

    def test_provider_fields_exclude_generic_keys(self):
        fields = parse_spec("vmware", {"cpu": 8}).provider_fields()

        assert "cpu" not in fields
        assert fields["datastore"] == "datastore1"

    def test_unknown_provider(self):
        with pytest.raises(InvalidInputError, match="unsupported provider"):
            parse_spec("digitalocean", {})

    @pytest.mark.parametrize(
        "raw",
        [
            {"cpu": 0},
            {"memory": 64},
            {"cpu": "many"},
            {"name": ""},
        ],
    )
    def test_invalid_values(self, raw):
        with pytest.raises(InvalidInputError, match="invalid pve spec"):
            parse_spec("pve", raw)
