import json
import os
import subprocess
from unittest.mock import MagicMock

import pytest

from labplatform.terraform import ModuleFetchAuth, TerraformExecutor
from labplatform.terraform.executor import parse_outputs, strip_ansi
from labplatform.terraform.generator import TERRAFORMRC, TERRAGRUNT_HCL


def completed(returncode=0, stdout="", stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def mock_run(mocker):
    return mocker.patch(
        "labplatform.terraform.executor.subprocess.run", return_value=completed()
    )


@pytest.fixture
def executor():
    return TerraformExecutor(base_env={"PATH": "/usr/bin", "HOME": "/root"})


class TestDispatch:
    def test_terraform_used_for_raw_dir(self, executor, mock_run, tmp_path):
        result = executor.init(tmp_path)

        assert result.success
        cmd = mock_run.call_args.args[0]
        assert cmd == ["terraform", "init", "-no-color", "-input=false"]
        assert mock_run.call_args.kwargs["cwd"] == tmp_path

    @pytest.mark.parametrize(
        ("stage", "subcommand"),
        [
            ("init", "init"),
            ("plan", "plan"),
            ("apply", "apply"),
            ("destroy", "destroy"),
            ("outputs", "output"),
        ],
    )
    def test_terragrunt_used_for_every_stage(
        self, executor, mock_run, tmp_path, stage, subcommand
    ):
        (tmp_path / TERRAGRUNT_HCL).write_text("")
        getattr(executor, stage)(tmp_path)

        commands = [call.args[0] for call in mock_run.call_args_list]
        assert commands[0][:2] == ["terragrunt", subcommand]
        for cmd in commands:
            assert cmd[0] == "terragrunt"
            assert "--terragrunt-non-interactive" in cmd

    def test_terragrunt_plan_writes_plan_file(self, executor, mock_run, tmp_path):
        (tmp_path / TERRAGRUNT_HCL).write_text("")
        executor.plan(tmp_path)

        assert "-out=tfplan" in mock_run.call_args.args[0]

    def test_apply_collects_outputs(self, executor, mock_run, tmp_path):
        outputs = {"vm_id": {"value": "100"}, "vm_ip": {"value": "10.0.0.5"}}
        mock_run.side_effect = [
            completed(stdout="Apply complete!"),
            completed(stdout=json.dumps(outputs)),
        ]

        result = executor.apply(tmp_path)

        assert result.success
        assert result.outputs == {"vm_id": "100", "vm_ip": "10.0.0.5"}
        assert mock_run.call_args_list[0].args[0][-1] == "tfplan"

    def test_failed_apply_skips_outputs(self, executor, mock_run, tmp_path):
        mock_run.return_value = completed(returncode=1, stderr="\x1b[31mError: quota\x1b[0m")

        result = executor.apply(tmp_path)

        assert not result.success
        assert result.error == "Error: quota"
        assert result.exit_code == 1
        assert mock_run.call_count == 1


class TestFailures:
    def test_timeout(self, mock_run, tmp_path):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="terraform", timeout=5)
        result = TerraformExecutor(timeout=5).init(tmp_path)

        assert not result.success
        assert "timed out after 5s" in result.error

    def test_missing_binary(self, executor, mock_run, tmp_path):
        mock_run.side_effect = FileNotFoundError("terraform")
        result = executor.destroy(tmp_path)

        assert not result.success
        assert "terraform" in result.error

    def test_empty_stderr_gets_exit_code_message(self, executor, mock_run, tmp_path):
        mock_run.return_value = completed(returncode=2)

        assert executor.init(tmp_path).diagnostic == "terraform init exited with 2"


class TestEnvironment:
    def test_scoped_env(self, executor, tmp_path):
        (tmp_path / TERRAFORMRC).write_text("")
        executor.write_module_auth(tmp_path, ModuleFetchAuth("git.lab", "ci", "tok"))

        env = executor.build_env(tmp_path)

        assert env["TF_IN_AUTOMATION"] == "1"
        assert env["TF_INPUT"] == "0"
        assert env["TF_CLI_CONFIG_FILE"] == str(tmp_path / TERRAFORMRC)
        assert env["HOME"] == str(tmp_path)
        assert (tmp_path / ".netrc").read_text() == "machine git.lab\nlogin ci\npassword tok\n"

    def test_home_untouched_without_netrc(self, executor, tmp_path):
        env = executor.build_env(tmp_path)

        assert env["HOME"] == "/root"
        assert "TF_CLI_CONFIG_FILE" not in env

    def test_process_environment_not_mutated(self, mock_run, tmp_path):
        (tmp_path / TERRAFORMRC).write_text("")
        before = dict(os.environ)

        TerraformExecutor().init(tmp_path)

        assert dict(os.environ) == before
        assert mock_run.call_args.kwargs["env"]["TF_CLI_CONFIG_FILE"] == str(tmp_path / TERRAFORMRC)


class TestParsing:
    def test_strip_ansi(self):
        assert strip_ansi("\x1b[1m\x1b[32mApply complete!\x1b[0m") == "Apply complete!"

    def test_parse_outputs_flattens(self):
        raw = json.dumps(
            {
                "vm_id": {"value": "101", "type": "string"},
                "ports": {"value": [22, 80]},
                "nothing": {"value": None},
            }
        )
        assert parse_outputs(raw) == {"vm_id": "101", "ports": "[22, 80]"}

    def test_parse_outputs_garbage(self):
        assert parse_outputs("not json") == {}
