"""HCL value rendering and module source helpers."""

from decimal import Decimal
import json
import math
from typing import Any
from urllib.parse import urlsplit

from labplatform.errors import InvalidInputError

GIT_PREFIX = "git::"


def _quote(value: str) -> str:
    # Escape template sequences so values are never interpolated
    return json.dumps(value).replace("${", "$${").replace("%{", "%%{")


def format_value(value: Any) -> str:
    """Render a Python value as an HCL expression.

    Integral numbers render without a decimal point, other numbers with one,
    strings are quoted, booleans are literal and collections nest.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidInputError(f"{value} cannot be expressed in HCL")
        if value.is_integer():
            return str(int(value))
        # Shortest round-trip digits, never exponent notation
        return format(Decimal(repr(value)), "f")
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, dict):
        items = ", ".join(f"{_quote(str(k))} = {format_value(v)}" for k, v in value.items())
        return "{ " + items + " }" if items else "{}"
    if isinstance(value, (list, tuple, set)):
        return "[" + ", ".join(format_value(v) for v in value) + "]"
    return _quote(str(value))


def format_assignments(values: dict[str, Any], indent: str = "") -> str:
    """Render ``key = value`` lines, one per entry, in insertion order."""
    return "".join(f"{indent}{key} = {format_value(value)}\n" for key, value in values.items())


def _with_ref(source: str, version: str | None) -> str:
    if not version:
        return source
    query = urlsplit(source.removeprefix(GIT_PREFIX)).query
    if "ref=" in query:
        return source
    separator = "&" if "?" in source else "?"
    return f"{source}{separator}ref={version}"


def format_module_source(source: str, version: str | None = None) -> str:
    """Rewrite a module source into a form terragrunt can fetch over git.

    ``https://host/org/repo//modules/vm`` with version ``v1.2.0`` becomes
    ``git::https://host/org/repo.git//modules/vm?ref=v1.2.0``. Sources that are
    neither git:: nor http(s) (registry addresses, local paths) are returned
    unchanged.
    """
    source = source.strip()
    if source.startswith(GIT_PREFIX):
        return _with_ref(source, version)

    scheme, sep, rest = source.partition("://")
    if not sep or scheme not in ("https", "http"):
        return source

    base, query_sep, query = rest.partition("?")
    repo, subpath_sep, subpath = base.partition("//")
    if not repo.endswith(".git") and ".git/" not in repo:
        repo = repo.rstrip("/") + ".git"
    rewritten = f"{GIT_PREFIX}{scheme}://{repo}{subpath_sep}{subpath}{query_sep}{query}"
    return _with_ref(rewritten, version)


def extract_host(url: str) -> str | None:
    """Host of an http(s)/git/ssh URL, also for ``git::`` and scp-style sources."""
    url = url.strip().removeprefix(GIT_PREFIX)
    if "://" not in url and "@" in url and ":" in url:
        # git@host:org/repo.git
        return url.split("@", 1)[1].split(":", 1)[0] or None
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


def normalize_registry_endpoint(endpoint: str) -> str:
    endpoint = endpoint.strip()
    endpoint = endpoint.removeprefix("https://").removeprefix("http://")
    return endpoint.rstrip("/")


def render_terraformrc(endpoint: str, token: str | None = None) -> str:
    """CLI config routing all provider installs through a network mirror."""
    host = normalize_registry_endpoint(endpoint)
    content = (
        "provider_installation {\n"
        "  network_mirror {\n"
        f'    url = "https://{host}/v1/providers/"\n'
        '    include = ["*/*"]\n'
        "  }\n"
        "  direct {\n"
        '    exclude = ["*/*"]\n'
        "  }\n"
        "}\n"
    )
    if token:
        content += f'\ncredentials "{host}" {{\n  token = {_quote(token)}\n}}\n'
    return content
