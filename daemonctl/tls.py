"""Mutually authenticated TLS session setup for the control channel."""

from __future__ import annotations

import logging
import os
import socket
import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature

from .errors import TlsError, TlsFailure

LOGGER = logging.getLogger(__name__)

ENTROPY_SEED_BYTES = 256
MAX_CHAIN_DEPTH = 8


@dataclass(frozen=True, slots=True)
class IdentityMaterial:
    """Client identity plus the issuer trusted to vouch for the server."""

    client_cert: Path
    client_key: Path
    trusted_issuer: Path

    def load_trusted_issuers(self) -> List[x509.Certificate]:
        try:
            data = self.trusted_issuer.read_bytes()
        except OSError as exc:
            raise TlsError(
                TlsFailure.CONTEXT,
                f"Error setting up SSL_CTX verify, server cert: {exc}",
            ) from exc

        try:
            return x509.load_pem_x509_certificates(data)
        except ValueError as exc:
            raise TlsError(
                TlsFailure.CONTEXT,
                f"Error setting up SSL_CTX verify, server cert: {exc}",
            ) from exc


def ensure_entropy() -> None:
    """Seed the OpenSSL PRNG when it reports insufficient entropy.

    TLS key exchange draws from the process-wide generator, so this runs
    once at startup before any session is established.
    """

    if ssl.RAND_status():
        return
    ssl.RAND_add(os.urandom(ENTROPY_SEED_BYTES), float(ENTROPY_SEED_BYTES))
    LOGGER.warning("no entropy, seeding openssl PRNG from os.urandom")


def build_context(identity: IdentityMaterial) -> ssl.SSLContext:
    """Create the client context used for every control connection.

    Only ``identity.trusted_issuer`` is trusted; the system store is never
    loaded. Host names are not checked because trust is pinned to that
    issuer rather than to a name.
    """

    try:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    except ssl.SSLError as exc:
        raise TlsError(
            TlsFailure.CONTEXT, f"could not allocate SSL context: {exc}"
        ) from exc

    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.check_hostname = False
    context.verify_mode = ssl.CERT_REQUIRED

    try:
        context.load_cert_chain(
            certfile=str(identity.client_cert), keyfile=str(identity.client_key)
        )
    except (ssl.SSLError, OSError) as exc:
        raise TlsError(
            TlsFailure.CONTEXT,
            f"Error setting up SSL_CTX client key and cert: {exc}",
        ) from exc

    try:
        context.load_verify_locations(cafile=str(identity.trusted_issuer))
    except (ssl.SSLError, OSError) as exc:
        raise TlsError(
            TlsFailure.CONTEXT,
            f"Error setting up SSL_CTX verify, server cert: {exc}",
        ) from exc

    return context


class TlsSessionEstablisher:
    """Wraps a connected socket and authenticates the server.

    A completed handshake is not enough on its own: the chain the server
    presented is walked up to a trusted issuer afterwards, and a missing
    certificate is rejected separately. Intermediates are taken only from
    the presented chain, never from elsewhere.
    """

    def __init__(
        self,
        identity: IdentityMaterial,
        *,
        context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self._identity = identity
        self._context = context if context is not None else build_context(identity)
        self._trusted = identity.load_trusted_issuers()

    @property
    def context(self) -> ssl.SSLContext:
        return self._context

    def establish(self, sock: socket.socket) -> ssl.SSLSocket:
        try:
            session = self._context.wrap_socket(
                sock,
                server_side=False,
                do_handshake_on_connect=False,
                suppress_ragged_eofs=False,
            )
        except (ssl.SSLError, OSError) as exc:
            sock.close()
            raise TlsError(
                TlsFailure.HANDSHAKE, f"could not set up SSL session: {exc}"
            ) from exc

        try:
            self._handshake(session)
            self._check_peer(session)
        except TlsError:
            session.close()
            raise

        LOGGER.debug(
            "TLS session established: %s %s",
            session.version(),
            (session.cipher() or ("unknown",))[0],
        )
        return session

    def _handshake(self, session: ssl.SSLSocket) -> None:
        while True:
            try:
                session.do_handshake()
            except (ssl.SSLWantReadError, ssl.SSLWantWriteError):
                continue
            except ssl.SSLCertVerificationError as exc:
                raise TlsError(
                    TlsFailure.VERIFICATION,
                    f"SSL verification failed: {exc.verify_message or exc}",
                ) from exc
            except (ssl.SSLError, OSError) as exc:
                raise TlsError(
                    TlsFailure.HANDSHAKE, f"SSL handshake failed: {exc}"
                ) from exc
            return

    def _check_peer(self, session: ssl.SSLSocket) -> None:
        peer_der = session.getpeercert(binary_form=True)

        if peer_der is not None and not self._chain_verified(
            self._presented_chain(session, peer_der)
        ):
            raise TlsError(
                TlsFailure.VERIFICATION,
                "SSL verification failed: server certificate does not chain "
                f"to {self._identity.trusted_issuer}",
            )

        if peer_der is None:
            raise TlsError(
                TlsFailure.NO_PEER_CERTIFICATE,
                "Server presented no peer certificate",
            )

    @staticmethod
    def _presented_chain(session: ssl.SSLSocket, peer_der: bytes) -> List[bytes]:
        """Certificates as sent by the server, leaf first."""

        chain = [bytes(der) for der in session.get_unverified_chain() or []]
        if not chain or chain[0] != peer_der:
            chain.insert(0, peer_der)
        return chain

    def _chain_verified(self, chain: List[bytes]) -> bool:
        try:
            certificates = [x509.load_der_x509_certificate(der) for der in chain]
        except ValueError:
            return False

        current = certificates[0]
        intermediates = certificates[1:]
        for _ in range(MAX_CHAIN_DEPTH):
            anchor = self._trusted_issuer_of(current)
            if anchor is not None:
                LOGGER.debug(
                    "Server certificate %s chains to %s",
                    certificates[0].subject.rfc4514_string(),
                    anchor.subject.rfc4514_string(),
                )
                return True

            parent = _find_issuer(current, intermediates)
            if parent is None:
                return False
            intermediates.remove(parent)
            current = parent

        return False

    def _trusted_issuer_of(
        self, certificate: x509.Certificate
    ) -> Optional[x509.Certificate]:
        if certificate in self._trusted:
            return certificate
        return _find_issuer(certificate, self._trusted)


def _find_issuer(
    certificate: x509.Certificate, candidates: List[x509.Certificate]
) -> Optional[x509.Certificate]:
    for candidate in candidates:
        if candidate == certificate:
            continue
        try:
            certificate.verify_directly_issued_by(candidate)
        except (ValueError, TypeError, InvalidSignature):
            continue
        return candidate
    return None
