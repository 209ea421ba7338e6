import pytest

from labplatform.errors import InvalidInputError
from labplatform.terraform.hcl import (
    extract_host,
    format_assignments,
    format_module_source,
    format_value,
    normalize_registry_endpoint,
    render_terraformrc,
)


class TestFormatValue:
    def test_scalars(self):
        assert format_value(None) == "null"
        assert format_value(True) == "true"
        assert format_value(False) == "false"
        assert format_value(4) == "4"
        assert format_value(4.0) == "4"
        assert format_value(1.5) == "1.5"
        assert format_value("ubuntu") == '"ubuntu"'

    def test_small_and_large_floats_keep_decimal_point(self):
        assert format_value(1e-07) == "0.0000001"
        assert format_value(2.5e-05) == "0.000025"
        assert format_value(123456.75) == "123456.75"

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_floats_rejected(self, value):
        with pytest.raises(InvalidInputError):
            format_value(value)

    def test_strings_are_escaped(self):
        assert format_value('say "hi"') == '"say \\"hi\\""'
        assert format_value("${var.x}") == '"$${var.x}"'
        assert format_value("%{ if }") == '"%%{ if }"'

    def test_collections(self):
        assert format_value(["a", 1]) == '["a", 1]'
        assert format_value({"env": "dev", "n": 2}) == '{ "env" = "dev", "n" = 2 }'
        assert format_value({}) == "{}"

    def test_assignments_keep_order(self):
        rendered = format_assignments({"cpu": 2, "name": "vm"}, indent="  ")
        assert rendered == '  cpu = 2\n  name = "vm"\n'


class TestModuleSource:
    def test_https_source_rewritten_with_ref(self):
        assert (
            format_module_source("https://git.example.com/org/modules//vm/pve", "v1.2.0")
            == "git::https://git.example.com/org/modules.git//vm/pve?ref=v1.2.0"
        )

    def test_existing_git_suffix_kept(self):
        assert (
            format_module_source("https://git.example.com/org/modules.git//vm")
            == "git::https://git.example.com/org/modules.git//vm"
        )

    def test_git_prefixed_source_only_gets_ref(self):
        assert (
            format_module_source("git::https://host/org/m.git//vm?depth=1", "main")
            == "git::https://host/org/m.git//vm?depth=1&ref=main"
        )

    def test_existing_ref_not_duplicated(self):
        source = "git::https://host/org/m.git//vm?ref=v1"
        assert format_module_source(source, "v2") == source

    def test_registry_address_untouched(self):
        assert format_module_source("terraform-aws-modules/ec2/aws", "5.0") == (
            "terraform-aws-modules/ec2/aws"
        )


class TestHosts:
    def test_extract_host(self):
        assert extract_host("https://git.example.com/org/repo") == "git.example.com"
        assert extract_host("git::https://git.example.com/org/repo.git//x") == "git.example.com"
        assert extract_host("git@github.com:org/repo.git") == "github.com"
        assert extract_host("./local/module") is None

    def test_normalize_registry_endpoint(self):
        assert normalize_registry_endpoint("https://registry.lab/") == "registry.lab"

    def test_terraformrc_token_only_when_given(self):
        plain = render_terraformrc("https://registry.lab")
        assert 'url = "https://registry.lab/v1/providers/"' in plain
        assert "credentials" not in plain

        with_token = render_terraformrc("registry.lab", "s3cret")
        assert 'credentials "registry.lab"' in with_token
        assert 'token = "s3cret"' in with_token
