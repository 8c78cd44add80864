"""Image reference parsing.

Only what credential lookup needs: split a reference into registry host,
repository path, tag and digest.  Pure string work, no network.

Host detection follows the Docker convention: the first path component
is a registry host when it contains ``.`` or ``:`` or is ``localhost``.
Anything else lives on Docker Hub.
"""

from __future__ import annotations

import re
from typing import NamedTuple

DOCKER_HUB = "docker.io"

# Docker Hub host aliases that should be normalized
_DOCKER_HUB_ALIASES: frozenset[str] = frozenset({
    "docker.io",
    "index.docker.io",
    "registry-1.docker.io",
    "registry.hub.docker.com",
})

_HOST_RE = re.compile(
    r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)*"
    r"(?::[0-9]+)?$"
)
_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST_RE = re.compile(
    r"^[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}$"
)


class InvalidReference(ValueError):
    """Raised when an image reference cannot be parsed."""

    def __init__(self, ref: str, reason: str) -> None:
        self.ref = ref
        self.reason = reason
        super().__init__(f"invalid image reference {ref!r}: {reason}")


class Reference(NamedTuple):
    host: str
    repository: str
    tag: str | None
    digest: str | None

    def __str__(self) -> str:
        out = f"{self.host}/{self.repository}"
        if self.tag:
            out += f":{self.tag}"
        if self.digest:
            out += f"@{self.digest}"
        return out


def normalize_host(host: str) -> str:
    """Strip scheme and path from *host* and fold Docker Hub aliases."""
    for prefix in ("https://", "http://"):
        if host.startswith(prefix):
            host = host[len(prefix):]
            break
    host = host.split("/", 1)[0]
    if host.lower() in _DOCKER_HUB_ALIASES:
        return DOCKER_HUB
    return host


def _is_host(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def split(ref: str) -> Reference:
    """Parse *ref* into a :class:`Reference`.

    Raises :class:`InvalidReference` for anything the Docker reference
    grammar would reject.
    """
    if not ref or ref != ref.strip() or any(ch.isspace() for ch in ref):
        raise InvalidReference(ref, "empty or contains whitespace")

    name, digest = ref, None
    if "@" in name:
        name, digest = name.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise InvalidReference(ref, f"bad digest {digest!r}")

    tag = None
    last_slash = name.rfind("/")
    last_colon = name.rfind(":")
    if last_colon > last_slash:
        name, tag = name[:last_colon], name[last_colon + 1:]
        if not _TAG_RE.match(tag):
            raise InvalidReference(ref, f"bad tag {tag!r}")

    parts = name.split("/")
    if len(parts) > 1 and _is_host(parts[0]):
        host, path = parts[0], parts[1:]
        if not _HOST_RE.match(host):
            raise InvalidReference(ref, f"bad registry host {host!r}")
        host = normalize_host(host)
    else:
        host, path = DOCKER_HUB, parts

    for component in path:
        if not _COMPONENT_RE.match(component):
            raise InvalidReference(ref, f"bad path component {component!r}")

    if host == DOCKER_HUB and len(path) == 1:
        path = ["library", *path]

    return Reference(host, "/".join(path), tag, digest)


def registry_host(ref: str) -> str:
    """Return the registry host *ref* lives on (``docker.io`` when implicit)."""
    return split(ref).host
