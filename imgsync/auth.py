"""Registry credentials.

A credential is an opaque token handed to the runtime as the
``X-Registry-Auth`` payload: base64 of ``{"username": ..., "password": ...}``.
Providers map a registry host to a token; an empty token means "no
credential" and is never an error.

Use :func:`as_provider` to accept whatever the embedding application
passes in (a provider, or a plain ``host -> str`` callable).
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from imgsync import log
from imgsync.reference import normalize_host

# Push auth payload for "no credential": base64 of a single space.
ANONYMOUS_PUSH_AUTH = "IA=="


class AuthFileError(Exception):
    """Raised when an auth file exists but cannot be read."""


@dataclass(frozen=True)
class Credential:
    """Either a present token or the absent marker."""

    token: str | None = None

    @classmethod
    def present(cls, token: str) -> Credential:
        return cls(token or None)

    @classmethod
    def absent(cls) -> Credential:
        return cls(None)

    @property
    def is_present(self) -> bool:
        return bool(self.token)

    def __repr__(self) -> str:
        # never print the token itself
        return "Credential(<present>)" if self.is_present else "Credential(<absent>)"


# ── Token codec ──────────────────────────────────────────────────────

def encode_payload(payload: Mapping[str, Any]) -> str:
    """Encode an arbitrary ``X-Registry-Auth`` payload."""
    raw = json.dumps(dict(payload))
    return base64.urlsafe_b64encode(raw.encode()).decode()


def encode_token(username: str, password: str) -> str:
    return encode_payload({"username": username, "password": password})


def decode_token(token: str) -> dict[str, Any] | None:
    """Decode an ``X-Registry-Auth`` token, or return None if it is not one."""
    if not token:
        return None
    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode())
        data = json.loads(raw.decode())
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


# ── Providers ────────────────────────────────────────────────────────

class CredentialProvider(ABC):
    """Abstract base class for credential sources."""

    @abstractmethod
    def token_for(self, host: str) -> str:
        """Return the token for *host*, or ``""`` when there is none."""

    def credential_for(self, host: str) -> Credential:
        token = self.token_for(host)
        if not token:
            return Credential.absent()
        return Credential.present(token)


class NoCredentials(CredentialProvider):
    """Provider that never has a credential."""

    def token_for(self, host: str) -> str:
        return ""


class StaticCredentials(CredentialProvider):
    """Tokens from an in-memory ``{host: token}`` mapping."""

    def __init__(self, tokens: Mapping[str, str] | None = None) -> None:
        self.tokens = {normalize_host(h): t for h, t in (tokens or {}).items()}

    def token_for(self, host: str) -> str:
        return self.tokens.get(normalize_host(host), "")


class FuncCredentials(CredentialProvider):
    """Adapter for a plain ``host -> token`` callable."""

    def __init__(self, func: Callable[[str], str | None]) -> None:
        self.func = func

    def token_for(self, host: str) -> str:
        return self.func(host) or ""


def default_auth_file() -> Path:
    """Return the auth file the container tools would use.

    ``$REGISTRY_AUTH_FILE`` wins, then ``$DOCKER_CONFIG/config.json``,
    then ``~/.docker/config.json``.
    """
    env = os.environ.get("REGISTRY_AUTH_FILE")
    if env:
        return Path(env)
    docker_config = os.environ.get("DOCKER_CONFIG")
    if docker_config:
        return Path(docker_config) / "config.json"
    return Path.home() / ".docker" / "config.json"


class AuthFile(CredentialProvider):
    """Credentials from a Docker/Podman ``auths`` JSON file.

    Entries carry ``auth`` (base64 ``user:password``), explicit
    ``username``/``password``, or an ``identitytoken``.  Keys may be bare
    hosts or URLs such as ``https://index.docker.io/v1/``.  A missing file
    means no credentials.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else default_auth_file()
        self.tokens = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.is_file():
            log.debug(f"auth file {self.path} not found, using no credentials")
            return {}
        try:
            with open(self.path) as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise AuthFileError(f"cannot read auth file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise AuthFileError(f"auth file {self.path} is not a JSON object")

        tokens: dict[str, str] = {}
        for key, entry in (data.get("auths") or {}).items():
            if not isinstance(entry, dict):
                continue
            token = _entry_token(entry)
            if token is None:
                log.debug(f"auth file entry {key} has no usable credentials")
                continue
            tokens.setdefault(normalize_host(key), token)
        return tokens

    def token_for(self, host: str) -> str:
        return self.tokens.get(normalize_host(host), "")


def _entry_token(entry: dict[str, Any]) -> str | None:
    """Build the token for one ``auths`` entry, or None if it has nothing.

    An ``identitytoken`` is carried in the token as is.
    """
    if entry.get("identitytoken"):
        return encode_payload({"identitytoken": str(entry["identitytoken"])})
    creds = _entry_credentials(entry)
    return encode_token(*creds) if creds else None


def _entry_credentials(entry: dict[str, Any]) -> tuple[str, str] | None:
    """Extract ``(username, password)`` from one ``auths`` entry."""
    if entry.get("username") and entry.get("password"):
        return str(entry["username"]), str(entry["password"])
    b64 = entry.get("auth")
    if not b64:
        return None
    try:
        decoded = base64.b64decode(b64).decode()
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise AuthFileError(f"malformed auth entry: {exc}") from exc
    if ":" not in decoded:
        raise AuthFileError("malformed auth entry: expected user:password")
    username, password = decoded.split(":", 1)
    return username, password


def as_provider(source: CredentialProvider | Callable[[str], str | None] | None) -> CredentialProvider:
    """Wrap *source* so the client can always call ``credential_for``."""
    if source is None:
        return NoCredentials()
    if isinstance(source, CredentialProvider):
        return source
    if callable(source):
        return FuncCredentials(source)
    raise TypeError(f"not a credential source: {source!r}")
