"""Terraform / Terragrunt subprocess execution.

Each stage runs synchronously with captured output. Whether terraform or
terragrunt is invoked depends only on whether ``terragrunt.hcl`` exists in
the working directory. Every subprocess gets its own environment mapping;
``os.environ`` is never modified.
"""

from dataclasses import dataclass, field
import json
import os
from pathlib import Path
import re
import subprocess
import time

import structlog

from labplatform.config import Settings
from labplatform.sanitize import command_output

from .generator import TERRAFORMRC, TERRAGRUNT_HCL

logger = structlog.get_logger(__name__)

PLAN_FILE = "tfplan"
NETRC = ".netrc"
NON_INTERACTIVE = "--terragrunt-non-interactive"

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")


def strip_ansi(text: str) -> str:
    return _ANSI_ESCAPE.sub("", text)


@dataclass
class StageResult:
    """Outcome of one executor stage."""

    stage: str
    success: bool
    output: str = ""
    error: str = ""
    duration: float = 0.0
    exit_code: int | None = None
    outputs: dict[str, str] = field(default_factory=dict)

    @property
    def diagnostic(self) -> str:
        return self.error or self.output


@dataclass
class ModuleFetchAuth:
    """HTTPS credentials git uses when terragrunt fetches a module source."""

    host: str
    username: str
    token: str = field(repr=False)


class TerraformExecutor:
    """Runs init/plan/apply/destroy in a working directory."""

    def __init__(
        self,
        terraform_binary: str = "terraform",
        terragrunt_binary: str = "terragrunt",
        timeout: int | None = None,
        base_env: dict[str, str] | None = None,
    ):
        self.terraform_binary = terraform_binary
        self.terragrunt_binary = terragrunt_binary
        self.timeout = timeout
        self._base_env = base_env

    @classmethod
    def from_settings(cls, settings: Settings) -> "TerraformExecutor":
        return cls(
            terraform_binary=settings.terraform_binary,
            terragrunt_binary=settings.terragrunt_binary,
            timeout=settings.stage_timeout_seconds,
        )

    @staticmethod
    def is_terragrunt(work_dir: Path) -> bool:
        return (Path(work_dir) / TERRAGRUNT_HCL).is_file()

    @staticmethod
    def write_module_auth(work_dir: Path, auth: ModuleFetchAuth) -> Path:
        """Write a .netrc that is picked up through HOME=<work_dir>."""
        path = Path(work_dir) / NETRC
        path.write_text(f"machine {auth.host}\nlogin {auth.username}\npassword {auth.token}\n")
        path.chmod(0o600)
        logger.info("module_auth_configured", host=auth.host, username=auth.username)
        return path

    def build_env(self, work_dir: Path) -> dict[str, str]:
        """Environment for one subprocess call, scoped to work_dir."""
        work_dir = Path(work_dir)
        env = dict(os.environ if self._base_env is None else self._base_env)
        env["TF_IN_AUTOMATION"] = "1"
        env["TF_INPUT"] = "0"
        if (work_dir / TERRAFORMRC).is_file():
            env["TF_CLI_CONFIG_FILE"] = str(work_dir / TERRAFORMRC)
        if (work_dir / NETRC).is_file():
            env["HOME"] = str(work_dir)
        return env

    def init(self, work_dir: Path) -> StageResult:
        return self._run(
            work_dir,
            "init",
            ["init", "-no-color", "-input=false"],
            ["init", "-no-color", NON_INTERACTIVE],
        )

    def plan(self, work_dir: Path) -> StageResult:
        return self._run(
            work_dir,
            "plan",
            ["plan", "-no-color", "-input=false", f"-out={PLAN_FILE}"],
            ["plan", "-no-color", f"-out={PLAN_FILE}", NON_INTERACTIVE],
        )

    def apply(self, work_dir: Path) -> StageResult:
        """Apply the stored plan and collect outputs on success."""
        result = self._run(
            work_dir,
            "apply",
            ["apply", "-no-color", "-auto-approve", PLAN_FILE],
            ["apply", "-no-color", "-auto-approve", PLAN_FILE, NON_INTERACTIVE],
        )
        if result.success:
            result.outputs = self.outputs(work_dir)
        return result

    def destroy(self, work_dir: Path) -> StageResult:
        return self._run(
            work_dir,
            "destroy",
            ["destroy", "-no-color", "-auto-approve"],
            ["destroy", "-no-color", "-auto-approve", NON_INTERACTIVE],
        )

    def outputs(self, work_dir: Path) -> dict[str, str]:
        """Declared outputs as a flat string map (empty when unavailable)."""
        result = self._run(
            work_dir,
            "output",
            ["output", "-json", "-no-color"],
            ["output", "-json", "-no-color", NON_INTERACTIVE],
        )
        if not result.success:
            logger.warning("terraform_outputs_unavailable", error=command_output(result.error))
            return {}
        return parse_outputs(result.output)

    def _run(
        self, work_dir: Path, stage: str, tf_args: list[str], tg_args: list[str]
    ) -> StageResult:
        work_dir = Path(work_dir)
        if self.is_terragrunt(work_dir):
            tool = "terragrunt"
            cmd = [self.terragrunt_binary, *tg_args]
        else:
            tool = "terraform"
            cmd = [self.terraform_binary, *tf_args]

        logger.info("terraform_stage_start", stage=stage, tool=tool, work_dir=str(work_dir))
        start = time.monotonic()

        try:
            process = subprocess.run(  # noqa: S603
                cmd,
                cwd=work_dir,
                env=self.build_env(work_dir),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            duration = time.monotonic() - start
            logger.error("terraform_stage_timeout", stage=stage, tool=tool, timeout=self.timeout)
            return StageResult(
                stage=stage,
                success=False,
                error=f"{stage} timed out after {self.timeout}s",
                duration=duration,
            )
        except OSError as e:
            duration = time.monotonic() - start
            logger.error(
                "terraform_stage_exception",
                stage=stage,
                tool=tool,
                error=str(e),
                error_type=type(e).__name__,
            )
            return StageResult(stage=stage, success=False, error=str(e), duration=duration)

        duration = time.monotonic() - start
        stdout = strip_ansi(process.stdout or "")
        stderr = strip_ansi(process.stderr or "")
        success = process.returncode == 0

        if success:
            logger.info(
                "terraform_stage_complete",
                stage=stage,
                tool=tool,
                duration_sec=round(duration, 2),
            )
        else:
            logger.error(
                "terraform_stage_failed",
                stage=stage,
                tool=tool,
                exit_code=process.returncode,
                duration_sec=round(duration, 2),
                stderr=command_output(stderr),
            )

        return StageResult(
            stage=stage,
            success=success,
            output=stdout,
            error="" if success else (stderr or f"{tool} {stage} exited with {process.returncode}"),
            duration=duration,
            exit_code=process.returncode,
        )


def parse_outputs(raw: str) -> dict[str, str]:
    """Flatten ``output -json`` into ``{name: string value}``."""
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError:
        logger.warning("terraform_outputs_unparseable", output=command_output(raw))
        return {}

    outputs: dict[str, str] = {}
    for key, entry in data.items():
        if not isinstance(entry, dict) or "value" not in entry:
            continue
        value = entry["value"]
        if value is None:
            continue
        outputs[key] = value if isinstance(value, str) else json.dumps(value)
    return outputs
