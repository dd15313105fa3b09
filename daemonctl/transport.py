"""Raw stream connection to the control endpoint."""

from __future__ import annotations

import logging
import socket

from .address import Endpoint
from .errors import ConnectError

LOGGER = logging.getLogger(__name__)


def connect(endpoint: Endpoint) -> socket.socket:
    """Open a blocking stream socket to ``endpoint``.

    There is no connect timeout; an unreachable peer blocks until the
    operating system gives up.
    """

    try:
        sock = socket.socket(endpoint.family, socket.SOCK_STREAM)
    except OSError as exc:
        raise ConnectError(f"socket: {exc.strerror or exc}") from exc

    try:
        sock.settimeout(None)
        LOGGER.debug("Connecting to %s", endpoint)
        sock.connect(endpoint.sockaddr)
    except OSError as exc:
        sock.close()
        raise ConnectError(
            f"connect to address {endpoint}: {exc.strerror or exc}"
        ) from exc

    return sock
