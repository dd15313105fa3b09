"""Error types raised along the control channel.

Every error is terminal for the invocation. Each one names the step that
failed so the top-level handler in :mod:`daemonctl.cli` can print a single
diagnostic and exit.
"""

from __future__ import annotations

from enum import Enum


class ControlError(RuntimeError):
    """Base class for failures of a control-client run."""

    step = "control"

    def __str__(self) -> str:
        message = super().__str__()
        return f"{self.step}: {message}" if message else self.step


class ConfigError(ControlError):
    """Raised when the configuration file cannot be read or is invalid."""

    step = "config"


class AddressParseError(ControlError):
    """Raised when the target endpoint string is malformed."""

    step = "address"


class ConnectError(ControlError):
    """Raised when the control socket cannot be created or connected."""

    step = "connect"


class TlsFailure(str, Enum):
    """Which part of TLS session setup failed."""

    CONTEXT = "context"
    """Client identity or trusted issuer could not be loaded."""

    HANDSHAKE = "handshake"
    """The TLS handshake did not complete."""

    VERIFICATION = "verification"
    """The server certificate is not vouched for by the trusted issuer."""

    NO_PEER_CERTIFICATE = "no_peer_certificate"
    """The handshake completed without the server presenting a certificate."""


class TlsError(ControlError):
    step = "tls"

    def __init__(self, failure: TlsFailure, message: str) -> None:
        super().__init__(message)
        self.failure = failure


class IoFailure(str, Enum):
    WRITE = "write"
    READ = "read"
    OUTPUT = "output"


class IoError(ControlError):
    """Raised when the command cannot be sent or the response stream breaks."""

    step = "io"

    def __init__(self, failure: IoFailure, message: str) -> None:
        super().__init__(message)
        self.failure = failure
