"""Podman CLI runtime backend.

This module has ZERO business logic.  It does not know about config
files, credentials lookup or retries.  It runs ``podman`` commands and
returns output.
"""

from __future__ import annotations

import base64
import json
import os
import shutil
import subprocess
import tempfile
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from imgsync import log
from imgsync.auth import ANONYMOUS_PUSH_AUTH, decode_token
from imgsync.ports import PortBinding, format_binding
from imgsync.reference import registry_host
from imgsync.runtime import RuntimeBase


class PodmanError(Exception):
    """Raised when a podman command fails."""

    def __init__(self, cmd: list[str], returncode: int, stderr: str) -> None:
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"Command failed (rc={returncode}): {' '.join(cmd)}\n{stderr}"
        )


class CredentialError(Exception):
    """Raised for a registry token podman cannot use."""


# ── Privilege escalation ─────────────────────────────────────────────

def _needs_privilege() -> bool:
    return os.getuid() != 0


def _priv_prefix() -> list[str]:
    """Return ``["doas"]`` or ``["sudo"]`` when needed, else ``[]``."""
    if not _needs_privilege():
        return []
    if shutil.which("doas"):
        return ["doas"]
    if shutil.which("sudo"):
        return ["sudo"]
    return []


# ── Internal helpers ──────────────────────────────────────────────────

def _auth_entry(auth: str) -> dict[str, str]:
    """Translate an ``X-Registry-Auth`` token into an ``auths`` entry.

    Only username/password tokens can be expressed.  Identity and
    registry tokens, and anything that does not decode, raise
    :class:`CredentialError`.
    """
    data = decode_token(auth)
    if data is None:
        raise CredentialError("registry token is not a base64 JSON auth payload")
    if data.get("identitytoken") or data.get("registrytoken"):
        raise CredentialError("podman cannot use identity or registry tokens")
    if not data.get("username"):
        raise CredentialError("registry token carries no username")
    pair = f"{data['username']}:{data.get('password', '')}"
    return {"auth": base64.b64encode(pair.encode()).decode()}


@contextmanager
def _authfile_args(ref: str, auth: str | None) -> Iterator[list[str]]:
    """Yield ``--authfile`` args for *auth*, or ``[]`` when anonymous.

    The credential goes to a temporary file readable by the owner only,
    never onto the command line.  The file is removed afterwards.
    """
    if auth is None or auth == ANONYMOUS_PUSH_AUTH:
        yield []
        return
    entry = _auth_entry(auth)
    with tempfile.NamedTemporaryFile(
        "w", prefix="imgsync-auth-", suffix=".json", delete=False,
    ) as tmp:
        path = tmp.name
        json.dump({"auths": {registry_host(ref): entry}}, tmp)
    try:
        yield ["--authfile", path]
    finally:
        os.unlink(path)


class PodmanRuntime(RuntimeBase):
    """Runtime driven through the ``podman`` command line."""

    def __init__(
        self,
        *,
        url: str | None = None,
        cert_dir: str | None = None,
        tls_verify: bool = True,
        binary: str = "podman",
    ) -> None:
        self.url = url
        self.cert_dir = cert_dir
        self.tls_verify = tls_verify
        self.binary = binary

    def _base(self) -> list[str]:
        cmd = [self.binary]
        if self.url:
            cmd += ["--url", self.url]
        return cmd

    def _tls_args(self) -> list[str]:
        args = []
        if self.cert_dir:
            args += ["--cert-dir", self.cert_dir]
        if not self.tls_verify:
            args.append("--tls-verify=false")
        return args

    def _run(
        self,
        args: list[str],
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``podman <args>``, log it, capture output, raise on failure."""
        cmd = self._base() + args
        # a remote service does its own privilege handling
        if not self.url:
            cmd = _priv_prefix() + cmd
        log.info(f"$ {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            raise PodmanError(cmd, 127, str(exc)) from exc
        if check and result.returncode != 0:
            stderr = result.stderr.strip() if result.stderr else ""
            raise PodmanError(cmd, result.returncode, stderr)
        return result

    def _transfer(self, verb: str, ref: str, auth: str | None) -> Iterable[str]:
        with _authfile_args(ref, auth) as auth_args:
            result = self._run([verb, *auth_args, *self._tls_args(), ref])
        return iter((result.stdout + result.stderr).splitlines())

    # ── Images ───────────────────────────────────────────────────────

    def images(self, filters: Mapping[str, str]) -> list[dict[str, Any]]:
        args = ["images", "--format", "json"]
        for key, val in filters.items():
            args += ["--filter", f"{key}={val}"]
        result = self._run(args)
        return json.loads(result.stdout) if result.stdout.strip() else []

    def pull(self, ref: str, auth: str | None = None) -> Iterable[str]:
        return self._transfer("pull", ref, auth)

    def push(self, ref: str, auth: str | None = None) -> Iterable[str]:
        return self._transfer("push", ref, auth)

    def tag(self, src: str, dst: str) -> None:
        self._run(["tag", src, dst])

    # ── Containers ───────────────────────────────────────────────────

    def create(
        self,
        image: str,
        *,
        name: str | None = None,
        exposed_ports: Iterable[str] = (),
        port_bindings: Mapping[str, list[PortBinding]] | None = None,
    ) -> str:
        args = ["create"]
        if name:
            args += ["--name", name]
        bindings = port_bindings or {}
        for key in sorted(exposed_ports):
            if key not in bindings:
                args += ["--expose", key]
        for key in sorted(bindings):
            for binding in bindings[key]:
                args += ["-p", format_binding(key, binding)]
        args.append(image)
        return self._run(args).stdout.strip()

    def start(self, container_id: str) -> None:
        self._run(["start", container_id])

    def remove(self, container_id: str, *, force: bool = False) -> None:
        args = ["rm"]
        if force:
            args.append("-f")
        args.append(container_id)
        self._run(args)
