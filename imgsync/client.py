"""Image synchronization client.

Builds the operations callers use on top of a runtime connection:

* :meth:`Client.pull` -- pull with retries and escalating backoff.
* :meth:`Client.push` -- single-attempt push.
* :meth:`Client.tag` -- local tag.
* :meth:`Client.repush` -- pull, tag, push: copy an image elsewhere.
* :meth:`Client.run` / :meth:`Client.force_remove` -- container lifecycle.
* :meth:`Client.list_images_for_repo` -- local images of a repository.

Credentials are looked up per call, keyed by the registry host of the
reference being transferred, and never cached here.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from imgsync import log
from imgsync.auth import (
    ANONYMOUS_PUSH_AUTH,
    Credential,
    CredentialProvider,
    as_provider,
)
from imgsync.config import ClientConfig
from imgsync.ports import parse_port_specs
from imgsync.reference import registry_host
from imgsync.retry import Backoff
from imgsync.runtime import RuntimeBase


class FilterError(ValueError):
    """Raised when a repository name cannot be used as a list filter."""


def _pull_auth(cred: Credential) -> str | None:
    """Pull omits the auth field entirely when there is no credential."""
    return cred.token if cred.is_present else None


def _push_auth(cred: Credential) -> str:
    """Push always sends an auth field, the placeholder if need be."""
    return cred.token if cred.is_present else ANONYMOUS_PUSH_AUTH


def _drain(stream: Iterable[str]) -> None:
    """Read a progress stream to the end.  Read errors propagate."""
    for line in stream:
        log.debug(line.rstrip())


def _reference_filter(repo: str) -> dict[str, str]:
    if not repo or any(ch.isspace() for ch in repo) or "=" in repo:
        raise FilterError(f"invalid repository filter: {repo!r}")
    return {"reference": repo}


class Client:
    """Container image client over a :class:`~imgsync.runtime.RuntimeBase`.

    Parameters
    ----------
    runtime:
        Runtime connection, reused for every call.
    credentials:
        Credential source: a :class:`~imgsync.auth.CredentialProvider`
        or a ``host -> token`` callable.  ``None`` means anonymous.
    config:
        Client settings.  Defaults to :class:`~imgsync.config.ClientConfig`.
    backoff:
        Retry state for pulls.  Defaults to a new :class:`~imgsync.retry.Backoff`
        built from *config*; pass a shared one to escalate across clients.
    """

    def __init__(
        self,
        runtime: RuntimeBase,
        credentials: CredentialProvider | Callable[[str], str | None] | None = None,
        config: ClientConfig | None = None,
        *,
        backoff: Backoff | None = None,
    ) -> None:
        self.runtime = runtime
        self.credentials = as_provider(credentials)
        self._config = config or ClientConfig()
        self.backoff = backoff or Backoff(
            self._config.retries, self._config.retry_delay,
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    def _credential(self, ref: str) -> Credential:
        host = registry_host(ref)
        cred = self.credentials.credential_for(host)
        log.debug(f"credential for {host}: {'present' if cred.is_present else 'absent'}")
        return cred

    # ── Images ───────────────────────────────────────────────────────

    def list_images_for_repo(self, repo: str) -> list[dict[str, Any]]:
        """Return local image summaries whose reference matches *repo*."""
        return self.runtime.images(_reference_filter(repo))

    def pull(self, ref: str) -> None:
        """Pull *ref*, retrying on failure.

        Makes up to ``backoff.tries`` attempts.  Every failed attempt,
        the last one included, sleeps and doubles the backoff delay.
        Raises the last attempt's error when all of them fail.
        """
        auth = _pull_auth(self._credential(ref))
        tries = self.backoff.tries

        for attempt in range(1, tries + 1):
            try:
                stream = self.runtime.pull(ref, auth)
                break
            except Exception as exc:
                log.warn(f"pull {ref} failed (attempt {attempt}/{tries}): {exc}")
                self.backoff.failed()
                if attempt == tries:
                    raise

        _drain(stream)
        log.success(f"Pulled {ref}")

    def push(self, ref: str) -> None:
        """Push *ref* once, authenticating against its own registry."""
        auth = _push_auth(self._credential(ref))
        _drain(self.runtime.push(ref, auth))
        log.success(f"Pushed {ref}")

    def tag(self, src: str, dst: str) -> None:
        self.runtime.tag(src, dst)

    def repush(self, src: str, dst: str) -> None:
        """Copy *src* to *dst*: pull, tag, push.  Stops at the first error."""
        log.step(f"Re-push {src} -> {dst}")
        with log.timed(f"re-push {dst}"):
            self.pull(src)
            self.tag(src, dst)
            self.push(dst)

    # ── Containers ───────────────────────────────────────────────────

    def run(self, ref: str, name: str | None = None, port_specs: Iterable[str] = ()) -> str:
        """Pull *ref* and start a container from it.  Returns the container ID.

        Port specs are parsed before anything touches the runtime.  If the
        container is created but fails to start, it is force-removed and
        the start error is raised.
        """
        exposed_ports, port_bindings = parse_port_specs(list(port_specs))

        self.pull(ref)

        container_id = self.runtime.create(
            ref,
            name=name,
            exposed_ports=exposed_ports,
            port_bindings=port_bindings,
        )
        try:
            self.runtime.start(container_id)
        except Exception:
            log.warn(f"container {container_id} failed to start, removing it")
            self._cleanup(container_id)
            raise

        log.success(f"Started {container_id} from {ref}")
        return container_id

    def _cleanup(self, container_id: str) -> None:
        try:
            self.runtime.remove(container_id, force=True)
        except Exception as exc:
            # the start error is the one the caller needs
            log.error(f"could not remove container {container_id}: {exc}")

    def force_remove(self, container_id: str) -> None:
        """Kill (if running) and remove a container."""
        self.runtime.remove(container_id, force=True)
