"""Shared fakes and factories for imgsync tests."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import pytest

from imgsync.auth import CredentialProvider
from imgsync.config import ClientConfig
from imgsync.retry import Backoff
from imgsync.runtime import RuntimeBase


class TransferError(Exception):
    """Stand-in for a runtime failure."""


class BrokenStream:
    """Progress stream that fails part-way through reading."""

    def __init__(self, lines: int = 1) -> None:
        self.lines = lines

    def __iter__(self):
        for i in range(self.lines):
            yield f"layer {i}"
        raise TransferError("stream reset")


class FakeRuntime(RuntimeBase):
    """Runtime that records every call as ``(name, args...)``.

    ``pull_failures`` is the number of pull attempts that fail before one
    succeeds (``-1`` means every attempt fails).  ``errors`` maps an
    operation name to the exception it raises.
    """

    def __init__(
        self,
        *,
        pull_failures: int = 0,
        errors: Mapping[str, Exception] | None = None,
        images: list[dict[str, Any]] | None = None,
        pull_stream: Iterable[str] | None = None,
        push_stream: Iterable[str] | None = None,
    ) -> None:
        self.pull_failures = pull_failures
        self.errors = dict(errors or {})
        self.image_list = images or []
        self.pull_stream = pull_stream
        self.push_stream = push_stream
        self.calls: list[tuple[Any, ...]] = []
        self.pull_attempts = 0

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def _maybe_fail(self, op: str) -> None:
        if op in self.errors:
            raise self.errors[op]

    def images(self, filters):
        self.calls.append(("images", dict(filters)))
        self._maybe_fail("images")
        return list(self.image_list)

    def pull(self, ref, auth=None):
        self.calls.append(("pull", ref, auth))
        self.pull_attempts += 1
        if self.pull_failures < 0 or self.pull_attempts <= self.pull_failures:
            raise TransferError(f"pull attempt {self.pull_attempts} failed")
        if self.pull_stream is not None:
            return self.pull_stream
        return iter(["Pulling fs layer", "Download complete"])

    def push(self, ref, auth=None):
        self.calls.append(("push", ref, auth))
        self._maybe_fail("push")
        if self.push_stream is not None:
            return self.push_stream
        return iter(["Pushed"])

    def tag(self, src, dst):
        self.calls.append(("tag", src, dst))
        self._maybe_fail("tag")

    def create(self, image, *, name=None, exposed_ports=(), port_bindings=None):
        self.calls.append(("create", image, name, set(exposed_ports), dict(port_bindings or {})))
        self._maybe_fail("create")
        return "c0ffee"

    def start(self, container_id):
        self.calls.append(("start", container_id))
        self._maybe_fail("start")

    def remove(self, container_id, *, force=False):
        self.calls.append(("remove", container_id, force))
        self._maybe_fail("remove")


class RecordingCredentials(CredentialProvider):
    """Provider that records the hosts it was asked about."""

    def __init__(self, tokens: Mapping[str, str] | None = None) -> None:
        self.tokens = dict(tokens or {})
        self.hosts: list[str] = []

    def token_for(self, host: str) -> str:
        self.hosts.append(host)
        return self.tokens.get(host, "")


class RecordingSleep:
    """Replacement for ``time.sleep`` that only records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_backoff(retries: int = 0, delay: float = 5.0) -> tuple[Backoff, RecordingSleep]:
    sleep = RecordingSleep()
    return Backoff(retries, delay, sleep=sleep), sleep


def make_config(**kwargs) -> ClientConfig:
    """Factory for ClientConfig with sensible defaults."""
    defaults = {
        "retries": 0,
        "retry_delay": 5.0,
        "runtime": "podman",
        "url": None,
        "cert_dir": None,
        "tls_verify": True,
        "auth_file": None,
    }
    defaults.update(kwargs)
    return ClientConfig(**defaults)


@pytest.fixture
def auth_file(tmp_path: Path) -> Path:
    """Write a Docker-style auth file with one registry entry."""
    path = tmp_path / "config.json"
    path.write_text(
        '{"auths": {"registry.example.com": {"auth": "dXNlcjpzM2NyZXQ="}}}\n'
    )
    return path
