"""Single command/response exchange over an authenticated session."""

from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass
from typing import BinaryIO, Sequence, Tuple

from .constants import PROTOCOL_TAG, READ_BUFFER_SIZE
from .errors import IoError, IoFailure

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Command:
    """One request line; sent once per connection."""

    words: Tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.words:
            raise ValueError("Command cannot be empty")
        for word in self.words:
            if "\n" in word or "\r" in word:
                raise ValueError(f"Command word contains a line break: {word!r}")

    @classmethod
    def from_args(cls, args: Sequence[str]) -> "Command":
        return cls(tuple(args))

    @property
    def name(self) -> str:
        return self.words[0]

    def to_wire(self) -> bytes:
        return f"{PROTOCOL_TAG} {' '.join(self.words)}\n".encode("utf-8")


def send_command(session: ssl.SSLSocket, command: Command) -> None:
    payload = command.to_wire()
    try:
        session.sendall(payload)
    except (ssl.SSLError, OSError) as exc:
        raise IoError(IoFailure.WRITE, f"could not SSL_write: {exc}") from exc
    LOGGER.debug("Sent command %r (%d bytes)", command.name, len(payload))


def relay_response(
    session: ssl.SSLSocket,
    output: BinaryIO,
    *,
    buffer_size: int = READ_BUFFER_SIZE,
) -> int:
    """Copy the response to ``output`` as it arrives.

    Returns the number of bytes relayed once the server closes the session
    with a TLS close_notify. An unclean end of stream is an error.
    """

    total = 0
    while True:
        try:
            chunk = session.recv(buffer_size)
        except (ssl.SSLError, OSError) as exc:
            raise IoError(IoFailure.READ, f"could not SSL_read: {exc}") from exc

        if not chunk:
            break

        try:
            output.write(chunk)
            output.flush()
        except (OSError, ValueError) as exc:
            raise IoError(
                IoFailure.OUTPUT, f"could not write response: {exc}"
            ) from exc
        total += len(chunk)

    LOGGER.debug("Server closed the session after %d bytes", total)
    return total
