"""Container runtime abstraction and factory.

Use :func:`for_config` to obtain a runtime instance -- never import a
backend class directly.  Backends run commands and return output; they
know nothing about credentials lookup, retries or re-push.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from imgsync.config import ClientConfig
    from imgsync.ports import PortBinding


class RuntimeBase(ABC):
    """Abstract base class for container runtimes."""

    @abstractmethod
    def images(self, filters: Mapping[str, str]) -> list[dict[str, Any]]:
        """List local images matching *filters* (e.g. ``{"reference": "nginx"}``)."""

    @abstractmethod
    def pull(self, ref: str, auth: str | None = None) -> Iterable[str]:
        """Pull *ref*.  ``auth=None`` sends no auth at all.

        Returns the progress stream; the caller reads it to the end.
        """

    @abstractmethod
    def push(self, ref: str, auth: str | None = None) -> Iterable[str]:
        """Push *ref*.  Returns the progress stream."""

    @abstractmethod
    def tag(self, src: str, dst: str) -> None:
        """Put the *dst* tag on local image *src*."""

    @abstractmethod
    def create(
        self,
        image: str,
        *,
        name: str | None = None,
        exposed_ports: Iterable[str] = (),
        port_bindings: Mapping[str, list[PortBinding]] | None = None,
    ) -> str:
        """Create a container from *image*.  Returns the container ID."""

    @abstractmethod
    def start(self, container_id: str) -> None:
        """Start a created container."""

    @abstractmethod
    def remove(self, container_id: str, *, force: bool = False) -> None:
        """Remove a container; ``force`` kills it first if running."""


def for_config(cfg: ClientConfig) -> RuntimeBase:
    """Return the runtime backend named by ``cfg.runtime``."""
    if cfg.runtime == "podman":
        from imgsync.runtime.podman import PodmanRuntime
        return PodmanRuntime(
            url=cfg.url,
            cert_dir=cfg.cert_dir,
            tls_verify=cfg.tls_verify,
        )
    raise ValueError(f"unsupported container runtime: {cfg.runtime!r}")
