"""Client configuration: YAML file plus environment overrides.

This module has ZERO side effects.  It reads YAML and the environment
and returns a dataclass.  It does not run podman or touch the network.

Example ``.imgsync.yaml``::

    retries: 3
    retry_delay: 5
    runtime:
      url: unix:///run/podman/podman.sock
      cert_dir: /etc/containers/certs.d
      tls_verify: true
    auth_file: ~/.docker/config.json
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULT_RETRIES = 0
DEFAULT_RETRY_DELAY = 5.0

_CONFIG_PATHS = [
    Path(".imgsync.yaml"),
    Path.home() / ".config" / "imgsync" / "config.yaml",
]

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ConfigError(Exception):
    """Raised for unreadable or invalid configuration."""


@dataclass
class ClientConfig:
    """Settings consumed by the client and the runtime connection."""

    retries: int = DEFAULT_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    runtime: str = "podman"
    url: str | None = None
    cert_dir: str | None = None
    tls_verify: bool = True
    auth_file: str | None = None

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ConfigError(f"retries must be >= 0, got {self.retries}")
        if self.retry_delay < 0:
            raise ConfigError(f"retry_delay must be >= 0, got {self.retry_delay}")


# ── Value coercion ───────────────────────────────────────────────────

def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name}: expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name}: expected an integer, got {value!r}") from exc


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{name}: expected a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name}: expected a number, got {value!r}") from exc


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{name}: expected a boolean, got {value!r}")


# ── Loading ──────────────────────────────────────────────────────────

def _find_config_file(base: Path | None = None) -> Path | None:
    """Return the first existing config file, searching *base* first."""
    candidates = list(_CONFIG_PATHS)
    if base is not None:
        candidates[0] = base / ".imgsync.yaml"
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def _from_data(data: dict[str, Any]) -> dict[str, Any]:
    """Translate the YAML layout into ClientConfig keyword arguments."""
    kwargs: dict[str, Any] = {}
    if "retries" in data:
        kwargs["retries"] = _as_int("retries", data["retries"])
    if "retry_delay" in data:
        kwargs["retry_delay"] = _as_float("retry_delay", data["retry_delay"])
    if data.get("auth_file"):
        kwargs["auth_file"] = os.path.expanduser(str(data["auth_file"]))

    runtime = data.get("runtime", {})
    if isinstance(runtime, str):
        runtime = {"name": runtime}
    if not isinstance(runtime, dict):
        raise ConfigError("runtime: expected a mapping or a name")
    if runtime.get("name"):
        kwargs["runtime"] = str(runtime["name"])
    if runtime.get("url"):
        kwargs["url"] = str(runtime["url"])
    if runtime.get("cert_dir"):
        kwargs["cert_dir"] = os.path.expanduser(str(runtime["cert_dir"]))
    if "tls_verify" in runtime:
        kwargs["tls_verify"] = _as_bool("runtime.tls_verify", runtime["tls_verify"])
    return kwargs


def _from_env(environ: Mapping[str, str]) -> dict[str, Any]:
    """Environment overrides.  Empty variables are ignored.

    Registry TLS settings come from ``IMGSYNC_CERT_DIR`` and
    ``IMGSYNC_TLS_VERIFY`` only.  Docker's ``DOCKER_CERT_PATH`` and
    ``DOCKER_TLS_VERIFY`` describe the daemon connection and are not read.
    """
    kwargs: dict[str, Any] = {}
    if environ.get("IMGSYNC_RETRIES"):
        kwargs["retries"] = _as_int("IMGSYNC_RETRIES", environ["IMGSYNC_RETRIES"])
    if environ.get("IMGSYNC_RETRY_DELAY"):
        kwargs["retry_delay"] = _as_float(
            "IMGSYNC_RETRY_DELAY", environ["IMGSYNC_RETRY_DELAY"],
        )
    url = environ.get("CONTAINER_HOST") or environ.get("DOCKER_HOST")
    if url:
        kwargs["url"] = url
    if environ.get("IMGSYNC_CERT_DIR"):
        kwargs["cert_dir"] = os.path.expanduser(environ["IMGSYNC_CERT_DIR"])
    if environ.get("IMGSYNC_TLS_VERIFY", "").strip():
        kwargs["tls_verify"] = _as_bool(
            "IMGSYNC_TLS_VERIFY", environ["IMGSYNC_TLS_VERIFY"],
        )
    return kwargs


def load(
    path: str | Path | None = None,
    *,
    base: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ClientConfig:
    """Load configuration.

    Parameters
    ----------
    path:
        Explicit config file.  It must exist.  When omitted, the first of
        ``./.imgsync.yaml`` and ``~/.config/imgsync/config.yaml`` is used,
        and no file at all means defaults.
    base:
        Directory searched instead of the current one.
    environ:
        Environment mapping for overrides.  Defaults to ``os.environ``.
    """
    if path is not None:
        config_file: Path | None = Path(path)
        if not config_file.is_file():
            raise ConfigError(f"config file not found: {config_file}")
    else:
        config_file = _find_config_file(base)

    kwargs: dict[str, Any] = {}
    if config_file is not None:
        kwargs.update(_from_data(_read_yaml(config_file)))
    kwargs.update(_from_env(os.environ if environ is None else environ))
    return ClientConfig(**kwargs)
