"""LAN discovery of a C64 Ultimate via its UDP ident service.

A ``ping`` datagram is broadcast and the first reply, from any sender, is
taken as the answer. The reply banner looks like::

    *** C64 Ultimate (V1.47) 3.14 ***

The transport-level source address is authoritative, not anything the banner
claims. The LAN is assumed trusted: the banner match is the only check.
"""

import logging
import re
import socket
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

PROBE = b"ping"
BROADCAST_ADDR = "255.255.255.255"
IDENT_PORT = 64
DISCOVERY_TIMEOUT = 0.5  # seconds
MAX_DATAGRAM = 2048

BANNER_MARKER = "C64 Ultimate"

_VERSION_RE = re.compile(r"[0-9.]+")


class DiscoveryStatus(Enum):
    FOUND = "found"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    SOCKET_ERROR = "socket_error"


@dataclass(frozen=True, slots=True)
class DiscoveryResult:
    """Outcome of a single discovery probe.

    Attributes:
        status: Why the probe ended.
        address: Sender IP address, only set when FOUND.
        version: Version token from the banner, only set when FOUND.
        banner: Decoded reply payload, when one was received and decoded.
    """

    status: DiscoveryStatus
    address: str | None = None
    version: str | None = None
    banner: str | None = None

    @property
    def found(self) -> bool:
        return self.status is DiscoveryStatus.FOUND


def parse_banner(payload: str) -> str | None:
    """Return the version token of an ident reply, or None if it isn't one.

    The text after the first ``C64 Ultimate`` marker (up to any repeat of
    it) must contain a ``)``; the first whitespace-separated token after that
    parenthesis must consist only of digits and dots.
    """
    parts = payload.split(BANNER_MARKER)
    if len(parts) < 2:
        return None
    after_marker = parts[1].split(")")
    if len(after_marker) < 2:
        return None
    tokens = after_marker[1].split()
    if not tokens:
        return None
    token = tokens[0]
    if not _VERSION_RE.fullmatch(token):
        return None
    return token


def _udp_socket() -> socket.socket:
    return socket.socket(socket.AF_INET, socket.SOCK_DGRAM)


def probe(
    timeout: float = DISCOVERY_TIMEOUT,
    *,
    broadcast_addr: str = BROADCAST_ADDR,
    port: int = IDENT_PORT,
    socket_factory: Callable[[], socket.socket] = _udp_socket,
) -> DiscoveryResult:
    """Broadcast one probe and classify the single reply.

    Exactly one receive is performed; there is no collection loop.
    """
    try:
        with socket_factory() as sock:
            sock.bind(("0.0.0.0", 0))
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            except OSError as exc:
                logger.debug("Could not enable broadcast: %s", exc)
            sock.settimeout(timeout)
            sock.sendto(PROBE, (broadcast_addr, port))
            data, (sender, _) = sock.recvfrom(MAX_DATAGRAM)
    except socket.timeout:
        logger.debug("No discovery reply within %.3fs", timeout)
        return DiscoveryResult(DiscoveryStatus.TIMEOUT)
    except OSError as exc:
        logger.debug("Discovery socket error: %s", exc)
        return DiscoveryResult(DiscoveryStatus.SOCKET_ERROR)

    try:
        banner = data.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug("Undecodable discovery reply from %s", sender)
        return DiscoveryResult(DiscoveryStatus.MALFORMED)

    version = parse_banner(banner)
    if version is None:
        logger.debug("Unrecognized discovery reply from %s: %r", sender, banner)
        return DiscoveryResult(DiscoveryStatus.MALFORMED, banner=banner)

    logger.debug("Found C64 Ultimate %s at %s", version, sender)
    return DiscoveryResult(
        DiscoveryStatus.FOUND, address=sender, version=version, banner=banner
    )


def detect(timeout: float = DISCOVERY_TIMEOUT) -> str | None:
    """Return the IP address of a C64 Ultimate on the LAN, or None."""
    result = probe(timeout)
    return result.address if result.found else None
