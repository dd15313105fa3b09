"""Resolution of the control endpoint from ``ip`` or ``ip@port`` strings."""

from __future__ import annotations

import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

from .constants import DEFAULT_CONTROL_INTERFACE
from .errors import AddressParseError

LOGGER = logging.getLogger(__name__)

PORT_SEPARATOR = "@"

SocketAddress = Union[Tuple[str, int], Tuple[str, int, int, int]]


@dataclass(frozen=True, slots=True)
class Endpoint:
    host: str
    port: int
    family: socket.AddressFamily
    sockaddr: SocketAddress

    @property
    def is_ipv6(self) -> bool:
        return self.family == socket.AF_INET6

    def __str__(self) -> str:
        return f"{self.host}{PORT_SEPARATOR}{self.port}"


def resolve_endpoint(
    target: Optional[str],
    *,
    default_port: int,
    control_interfaces: Iterable[str] = (),
) -> Endpoint:
    """Turn a target string into exactly one concrete socket address.

    An empty target selects the first configured control interface, or the
    IPv4 loopback when none is configured. Only IP literals are accepted;
    host names are never looked up.
    """

    if not target:
        target = next(iter(control_interfaces), DEFAULT_CONTROL_INTERFACE)
        LOGGER.debug("No server given, using control interface %s", target)

    if PORT_SEPARATOR in target:
        host_text, _, port_text = target.rpartition(PORT_SEPARATOR)
        port = _parse_port(port_text)
        if port is None:
            raise AddressParseError(f"could not parse IP@port: {target}")
        error_message = f"could not parse IP@port: {target}"
    else:
        host_text = target
        port = default_port
        error_message = f"could not parse IP: {target}"

    address = _parse_host(host_text)
    if address is None:
        raise AddressParseError(error_message)

    family = socket.AF_INET6 if address.version == 6 else socket.AF_INET
    host = str(address)

    try:
        infos = socket.getaddrinfo(
            host,
            port,
            family,
            socket.SOCK_STREAM,
            0,
            socket.AI_NUMERICHOST | socket.AI_NUMERICSERV,
        )
    except socket.gaierror as exc:
        raise AddressParseError(f"{error_message} ({exc.strerror})") from exc

    return Endpoint(host=host, port=port, family=family, sockaddr=infos[0][4])


def _parse_port(text: str) -> Optional[int]:
    text = text.strip()
    if not (text.isascii() and text.isdigit()):
        return None
    port = int(text)
    if not 0 < port < 65536:
        return None
    return port


def _parse_host(
    text: str,
) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    text = text.strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    if not text:
        return None
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None
