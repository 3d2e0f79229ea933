"""Deployment target parsing.

A target is either a deployment id (`dpl_abc`) or a deployment URL
(`https://my-app-abc.now.sh/`). URLs are normalized to a bare host, and hosts
that embed an instance id (`<name>-<24 chars>.now.sh`) are split into the
deployment host and the instance id.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

from .errors import InvalidTarget

_DEFAULT_SUFFIX: Final[str] = ".now.sh"
_MAYBE_URL_RE: Final[re.Pattern[str]] = re.compile(
    r"^https?://|^localhost|\.\w+", flags=re.IGNORECASE
)
_SCHEME_RE: Final[re.Pattern[str]] = re.compile(r"^https?://", flags=re.IGNORECASE)
_INSTANCE_HOST_RE: Final[re.Pattern[str]] = re.compile(
    r"^(?P<name>.+)-(?P<instance>[a-z0-9]{24})(?P<suffix>\.now\.sh)$",
    flags=re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class Target:
    value: str
    instance_id: str | None = None


def maybe_url(value: str) -> bool:
    return bool(_MAYBE_URL_RE.search(value))


def normalize_url(value: str) -> str:
    """Strip scheme and trailing slash; imply `.now.sh` for bare subdomains."""

    url = value.strip()
    if url.endswith("/"):
        url = url[:-1]
    url = _SCHEME_RE.sub("", url)
    if "." not in url:
        url += _DEFAULT_SUFFIX
    return url


def parse_instance_url(host: str) -> tuple[str, str | None]:
    m = _INSTANCE_HOST_RE.match(host)
    if m is None:
        return host, None
    return m.group("name") + m.group("suffix"), m.group("instance")


def parse_target(value: str) -> Target:
    """Parse a CLI target argument.

    Raises:
        InvalidTarget: If a URL-style target includes a path component.
    """

    raw = value.strip()
    if not maybe_url(raw):
        return Target(value=raw)

    normalized = normalize_url(raw)
    if "/" in normalized:
        raise InvalidTarget(value)
    host, instance_id = parse_instance_url(normalized)
    return Target(value=host, instance_id=instance_id)
