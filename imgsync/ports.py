"""Port specification parsing for ``run``.

Accepts the ``-p`` syntax of the container CLIs::

    80                      expose 80/tcp, no binding
    8080:80                 host 8080 -> container 80/tcp
    127.0.0.1:8080:80/udp   bound to one address
    127.0.0.1::80           any host port on 127.0.0.1
    [::1]:8080:80           IPv6 host address
    8000-8002:80-82         ranges of equal length
    8000-8010:80            single container port, host range

Returns the exposed port keys (``"80/tcp"``) and the bindings keyed by
them.
"""

from __future__ import annotations

import ipaddress
from typing import NamedTuple

PROTOCOLS = ("tcp", "udp", "sctp")


class PortSpecError(ValueError):
    """Raised for a malformed port specification."""

    def __init__(self, spec: str, reason: str) -> None:
        self.spec = spec
        super().__init__(f"invalid port specification {spec!r}: {reason}")


class PortBinding(NamedTuple):
    host_ip: str
    host_port: str


def _parse_range(spec: str, text: str, *, lowest: int = 1) -> tuple[int, int]:
    """Parse ``"80"`` or ``"80-90"`` into an inclusive range.

    Host ports pass ``lowest=0``: port 0 lets the runtime pick one.
    """
    start_s, sep, end_s = text.partition("-")
    try:
        start = int(start_s)
        end = int(end_s) if sep else start
    except ValueError:
        raise PortSpecError(spec, f"bad port {text!r}") from None
    if not lowest <= start <= 65535 or not lowest <= end <= 65535:
        raise PortSpecError(spec, f"port out of range in {text!r}")
    if end < start:
        raise PortSpecError(spec, f"descending range {text!r}")
    return start, end


def _split_spec(spec: str) -> tuple[str, str, str]:
    """Split into ``(host_ip, host_port, container_port/proto)``."""
    rest = spec
    ip = ""
    if rest.startswith("["):
        close = rest.find("]")
        if close < 0 or rest[close + 1:close + 2] != ":":
            raise PortSpecError(spec, "unterminated IPv6 address")
        ip, rest = rest[1:close], rest[close + 2:]
        parts = rest.split(":")
        if len(parts) != 2:
            raise PortSpecError(spec, "expected [ip]:hostPort:containerPort")
        return ip, parts[0], parts[1]

    parts = rest.split(":")
    if len(parts) == 1:
        return "", "", parts[0]
    if len(parts) == 2:
        return "", parts[0], parts[1]
    if len(parts) == 3:
        return parts[0], parts[1], parts[2]
    raise PortSpecError(spec, "too many ':' separators")


def parse_port_spec(spec: str) -> list[tuple[str, PortBinding | None]]:
    """Parse one spec into ``(port/proto, binding-or-None)`` pairs."""
    if not spec or spec != spec.strip():
        raise PortSpecError(spec, "empty or padded with whitespace")
    ip, host_part, container_part = _split_spec(spec)
    if ip:
        try:
            ipaddress.ip_address(ip)
        except ValueError:
            raise PortSpecError(spec, f"bad host address {ip!r}") from None

    port_part, _, proto = container_part.partition("/")
    proto = proto.lower() or "tcp"
    if proto not in PROTOCOLS:
        raise PortSpecError(spec, f"unknown protocol {proto!r}")
    if not port_part:
        raise PortSpecError(spec, "no container port")

    c_start, c_end = _parse_range(spec, port_part)
    container_ports = list(range(c_start, c_end + 1))

    if not host_part:
        host_ports: list[str] = [""] * len(container_ports)
    else:
        h_start, h_end = _parse_range(spec, host_part, lowest=0)
        count = h_end - h_start + 1
        if count == len(container_ports):
            host_ports = [str(p) for p in range(h_start, h_end + 1)]
        elif len(container_ports) == 1:
            # one container port, the runtime picks from the host range
            host_ports = [host_part if count > 1 else str(h_start)]
        else:
            raise PortSpecError(spec, "host and container ranges differ in size")

    bind = ":" in spec
    out: list[tuple[str, PortBinding | None]] = []
    for port, host_port in zip(container_ports, host_ports):
        key = f"{port}/{proto}"
        out.append((key, PortBinding(ip, host_port) if bind else None))
    return out


def parse_port_specs(
    specs: list[str] | tuple[str, ...],
) -> tuple[set[str], dict[str, list[PortBinding]]]:
    """Parse all *specs* into ``(exposed_ports, port_bindings)``."""
    exposed: set[str] = set()
    bindings: dict[str, list[PortBinding]] = {}
    for spec in specs:
        for key, binding in parse_port_spec(spec):
            exposed.add(key)
            if binding is not None:
                bindings.setdefault(key, []).append(binding)
    return exposed, bindings


def format_binding(key: str, binding: PortBinding) -> str:
    """Render a binding back into ``-p`` syntax for the CLI runtime."""
    ip = f"[{binding.host_ip}]" if ":" in binding.host_ip else binding.host_ip
    if ip:
        return f"{ip}:{binding.host_port}:{key}"
    if binding.host_port:
        return f"{binding.host_port}:{key}"
    return key
