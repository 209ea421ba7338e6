"""Helpers that make user-controlled strings safe to log or pass to git."""

import re
from urllib.parse import urlsplit

from labplatform.errors import InvalidInputError

MAX_LOG_LENGTH = 500
MAX_OUTPUT_LENGTH = 1000
TRUNCATED_SUFFIX = "...[truncated]"

_WHITESPACE_CONTROL = re.compile(r"[\r\n\t]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_GIT_URL_DANGEROUS = re.compile(r"[;&|$`()<>]")
_GIT_BRANCH_INVALID = re.compile(r"[\s~^:?*\[\]\\]")
_URL_USERINFO = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")

ALLOWED_GIT_SCHEMES = frozenset({"https", "http", "git", "ssh", "file"})


def _truncate(value: str, limit: int) -> str:
    if len(value) > limit:
        return value[:limit] + TRUNCATED_SUFFIX
    return value


def for_log(value: str, limit: int = MAX_LOG_LENGTH) -> str:
    """Strip control characters and cap the length of a string for logging."""
    value = _WHITESPACE_CONTROL.sub(" ", value)
    value = _CONTROL_CHARS.sub("", value)
    return _truncate(value, limit)


def redact_url(value: str) -> str:
    """Replace any ``user:secret@`` segment of a URL with ``[REDACTED]@``."""
    return _URL_USERINFO.sub(r"\g<scheme>[REDACTED]@", value)


def url_for_log(value: str) -> str:
    return for_log(redact_url(value))


def command_output(output: str) -> str:
    """Sanitize subprocess output (URLs redacted) for a log line."""
    return for_log(redact_url(output), MAX_OUTPUT_LENGTH)


def validate_git_url(raw_url: str) -> str:
    """Validate a repository URL before it reaches a git subprocess.

    Raises:
        InvalidInputError: If the URL is empty, contains shell metacharacters,
            uses an unsupported scheme or lacks a host.
    """
    if not raw_url:
        raise InvalidInputError("invalid git URL: empty")
    if _GIT_URL_DANGEROUS.search(raw_url) or any(c in raw_url for c in "\r\n"):
        raise InvalidInputError(f"invalid git URL: {url_for_log(raw_url)}")

    try:
        parsed = urlsplit(raw_url)
    except ValueError as e:
        raise InvalidInputError(f"invalid git URL: {url_for_log(raw_url)}") from e

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_GIT_SCHEMES:
        raise InvalidInputError(f"invalid git URL scheme: {scheme or '<none>'}")
    # file:// URLs point at a local path and carry no host
    if scheme == "file":
        if not parsed.path:
            raise InvalidInputError("invalid git URL: missing path")
    elif not parsed.hostname:
        raise InvalidInputError(f"invalid git URL: missing host in {url_for_log(raw_url)}")
    return raw_url


def validate_git_branch(branch: str | None) -> str:
    """Validate a branch name; an empty branch means ``main``."""
    if not branch:
        return "main"
    if (
        _GIT_BRANCH_INVALID.search(branch)
        or branch.startswith("/")
        or branch.endswith("/")
        or ".." in branch
    ):
        raise InvalidInputError(f"invalid branch name: {for_log(branch)}")
    return branch
