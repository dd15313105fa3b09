"""Control client: resolve, connect, authenticate, exchange, close."""

from __future__ import annotations

import contextlib
import logging
import ssl
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional

from .address import Endpoint
from .exchange import Command, relay_response, send_command
from .tls import IdentityMaterial, TlsSessionEstablisher
from .transport import connect

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Connection:
    endpoint: Endpoint
    session: ssl.SSLSocket
    peer_closed: bool = False

    def close(self) -> None:
        """Shut down the TLS session, then close the underlying stream.

        close_notify is only sent back once the server has sent its own;
        on any other path the stream is closed without waiting on the peer.
        """

        try:
            if self.peer_closed:
                self.session.unwrap()
        except (ssl.SSLError, OSError) as exc:
            LOGGER.debug("TLS shutdown with %s failed: %s", self.endpoint, exc)
        finally:
            self.session.close()


class ControlClient:
    """Runs one command against the server per call to :meth:`run`."""

    def __init__(
        self,
        identity: IdentityMaterial,
        *,
        context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self._establisher = TlsSessionEstablisher(identity, context=context)

    @contextlib.contextmanager
    def open_connection(self, endpoint: Endpoint) -> Iterator[Connection]:
        sock = connect(endpoint)
        session = self._establisher.establish(sock)
        connection = Connection(endpoint=endpoint, session=session)
        try:
            yield connection
        finally:
            connection.close()

    def run(self, endpoint: Endpoint, command: Command, output: BinaryIO) -> int:
        """Send ``command`` and relay the response; returns bytes relayed."""

        with self.open_connection(endpoint) as connection:
            send_command(connection.session, command)
            relayed = relay_response(connection.session, output)
            connection.peer_closed = True
        return relayed
