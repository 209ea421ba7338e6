"""Git-backed store for generated node configs.

Each commit works on a fresh shallow clone in a unique temporary directory
that is removed afterwards, whatever the outcome. Pending commits record the
config before provisioning; applied commits mark it as live.
"""

import asyncio
from dataclasses import dataclass, field
import json
import os
from pathlib import Path
import re
import shutil
import subprocess
import tempfile

import structlog

from labplatform.config import Settings
from labplatform.errors import ConfigStoreError
from labplatform.models import GitAuthType, GitRepository
from labplatform.sanitize import command_output, url_for_log, validate_git_branch, validate_git_url

logger = structlog.get_logger(__name__)

NODE_METADATA = "node.json"
MAX_SLUG_LENGTH = 20
GIT_TIMEOUT = 300

_SLUG_INVALID = re.compile(r"[^a-z0-9-]")


def node_name(title: str, request_id: str) -> str:
    """``{title-slug}-{first 8 chars of id}``."""
    slug = _SLUG_INVALID.sub("", title.lower().replace(" ", "-"))[:MAX_SLUG_LENGTH]
    return f"{slug}-{request_id[:8]}"


def node_path(provider: str, resource_type: str, title: str, request_id: str) -> str:
    """Deterministic repository path for one request's config."""
    return "/".join(
        [provider or "default", "instance", resource_type or "vm", node_name(title, request_id)]
    )


@dataclass
class RepoTarget:
    """Detached copy of a git repository registration."""

    url: str
    branch: str = "main"
    auth_type: str = GitAuthType.NONE.value
    username: str | None = None
    token: str | None = field(default=None, repr=False)
    base_path: str = ""

    @classmethod
    def from_model(cls, repo: GitRepository) -> "RepoTarget":
        return cls(
            url=repo.url,
            branch=repo.branch or "main",
            auth_type=repo.auth_type or GitAuthType.NONE.value,
            username=repo.username,
            token=repo.token,
            base_path=repo.base_path or "",
        )

    def authenticated_url(self) -> str:
        """Clone URL, with credentials embedded for https token/password auth."""
        if (
            self.auth_type in (GitAuthType.TOKEN.value, GitAuthType.PASSWORD.value)
            and self.token
            and self.url.startswith("https://")
        ):
            username = self.username or "git"
            return f"https://{username}:{self.token}@{self.url.removeprefix('https://')}"
        return self.url


@dataclass
class NodeDocument:
    """What gets written for one node: rendered files plus metadata."""

    request_id: str
    name: str
    path: str
    files: dict[str, str]
    status: str
    resource_id: str | None = None

    def metadata(self) -> str:
        return json.dumps(
            {
                "request_id": self.request_id,
                "name": self.name,
                "status": self.status,
                "resource_id": self.resource_id,
            },
            indent=2,
            sort_keys=True,
        ) + "\n"


class ConfigStore:
    """Commits node documents to a registered storage repository."""

    def __init__(
        self,
        git_binary: str = "git",
        work_dir: str | None = None,
        author_name: str = "labplatform",
        author_email: str = "labplatform@localhost",
        timeout: int = GIT_TIMEOUT,
    ):
        self.git_binary = git_binary
        self.work_dir = work_dir
        self.author_name = author_name
        self.author_email = author_email
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConfigStore":
        return cls(
            git_binary=settings.git_binary,
            work_dir=settings.git_work_dir,
            author_name=settings.git_commit_author_name,
            author_email=settings.git_commit_author_email,
        )

    async def commit_pending(self, repo: RepoTarget, document: NodeDocument) -> str:
        message = f"Add pending node config: {document.name}"
        return await asyncio.to_thread(self._commit, repo, document, message)

    async def commit_applied(self, repo: RepoTarget, document: NodeDocument) -> str:
        message = f"Mark node config applied: {document.name}"
        return await asyncio.to_thread(self._commit, repo, document, message)

    async def commit_destroyed(self, repo: RepoTarget, document: NodeDocument) -> str:
        message = f"Mark node config destroyed: {document.name}"
        return await asyncio.to_thread(self._commit, repo, document, message)

    def _commit(self, repo: RepoTarget, document: NodeDocument, message: str) -> str:
        """Clone, write, commit and push; returns the new commit sha."""
        validate_git_url(repo.url)
        branch = validate_git_branch(repo.branch)

        if self.work_dir:
            Path(self.work_dir).mkdir(parents=True, exist_ok=True)
        clone_dir = Path(
            tempfile.mkdtemp(prefix=f"node-{document.request_id[:8]}-", dir=self.work_dir)
        ).resolve()
        try:
            self._git(
                [
                    "clone",
                    "--depth",
                    "1",
                    "--branch",
                    branch,
                    "--single-branch",
                    repo.authenticated_url(),
                    str(clone_dir),
                ],
                cwd=None,
            )

            target = self._target_dir(clone_dir, repo.base_path, document.path)
            target.mkdir(parents=True, exist_ok=True)
            for filename, content in document.files.items():
                (target / filename).write_text(content)
            (target / NODE_METADATA).write_text(document.metadata())

            relative = str(target.relative_to(clone_dir))
            self._git(["add", "--", relative], cwd=clone_dir)
            self._git(
                [
                    "-c",
                    f"user.name={self.author_name}",
                    "-c",
                    f"user.email={self.author_email}",
                    "commit",
                    "--allow-empty",
                    "-m",
                    message,
                ],
                cwd=clone_dir,
            )
            sha = self._git(["rev-parse", "HEAD"], cwd=clone_dir).strip()
            self._git(["push", "origin", f"HEAD:{branch}"], cwd=clone_dir)
        finally:
            shutil.rmtree(clone_dir, ignore_errors=True)

        logger.info(
            "node_config_committed",
            repo=url_for_log(repo.url),
            branch=branch,
            path=document.path,
            commit_sha=sha,
            node_status=document.status,
        )
        return sha

    @staticmethod
    def _target_dir(clone_dir: Path, base_path: str, path: str) -> Path:
        target = (clone_dir / base_path.strip("/") / path).resolve()
        if not target.is_relative_to(clone_dir):
            raise ConfigStoreError(f"node path escapes repository: {base_path}/{path}")
        return target

    def _git(self, args: list[str], cwd: Path | None) -> str:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        cmd = [self.git_binary, *args]
        subcommand = "commit" if args[0] == "-c" else args[0]
        try:
            process = subprocess.run(  # noqa: S603
                cmd,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ConfigStoreError(f"git {subcommand} timed out after {self.timeout}s") from e
        except OSError as e:
            raise ConfigStoreError(f"git {subcommand} could not run: {e}") from e

        if process.returncode != 0:
            output = command_output(process.stderr or process.stdout or "")
            logger.error(
                "git_command_failed",
                command=subcommand,
                exit_code=process.returncode,
                output=output,
            )
            raise ConfigStoreError(f"git {subcommand} failed: {output}")
        return process.stdout
