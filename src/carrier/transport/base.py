"""Transport interface.

This is the (small) contract that transport implementations follow. The
session layer only ever talks to a transport through these methods, so the
message bus underneath can change without the session noticing.
"""

from __future__ import annotations

import logging
import ssl
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..errors import (
    TransportError,
    TransportTimeout,
    TransportConnectionError,
    ConnectRefused,
    PublishFailure,
    SubscribeFailure,
)


# Quality of service levels, named after their MQTT equivalents. QOS1 is
# "at least once" delivery, and every subscribe/publish issued by a session
# blocks until the broker acknowledges it.

QOS0 = 0
QOS1 = 1

Deliver = Callable[[str, bytes], None]


class Transport(ABC):
    """Minimal contract for a publish/subscribe transport.

    A transport is built from a dictionary of connect *options*:

        host, port       where the broker lives
        client_id        identity presented to the broker
        username         always present; the internal service identity
        password         may be None
        log_level        verbosity of the underlying client library
        tls              None, or a dict with ca_certs, verify, crl_check

    :meth:`start` must not block waiting for the broker; the transport sets
    :attr:`connected` once the broker accepts the connection. Incoming
    messages for subscribed topics are handed to :attr:`deliver` as
    ``deliver(topic, data)``, from whatever thread the transport uses.
    """

    name = None

    #: whether host names are resolved to addresses before connecting
    resolve_host = True

    #: seconds to wait for the broker to acknowledge an operation
    timeout = 10

    def __init__(self, options: dict):
        self.options = dict(options)
        self.connected = threading.Event()
        self.deliver: Optional[Deliver] = None

    @abstractmethod
    def start(self) -> None:
        """Begin connecting to the broker; do not wait for completion."""

    @abstractmethod
    def disconnect(self) -> None:
        """Tear down the broker connection."""

    @abstractmethod
    def subscribe(self, topic: str, qos: int = QOS1) -> int:
        """Subscribe to *topic*, blocking until the broker confirms.

        Returns the granted quality of service.
        """

    @abstractmethod
    def unsubscribe(self, topic: str) -> None:
        """Remove a subscription to *topic*."""

    @abstractmethod
    def publish(self, topic: str, data: bytes, qos: int = QOS1):
        """Publish *data* to *topic*, blocking until the broker acknowledges
        receipt. Returns a transport-specific acknowledgment.
        """

    @property
    def is_open(self) -> bool:
        """Whether the transport is currently connected."""
        return self.connected.is_set()

    def _deliver(self, topic: str, data: bytes) -> None:
        deliver = self.deliver
        if deliver is not None:
            deliver(topic, bytes(data))


def ssl_context(tls: dict) -> ssl.SSLContext:
    """Build an SSLContext from the ``tls`` connect options.

    The broker is usually addressed by a resolved IP address, so the peer
    certificate chain is verified against the CA but the host name is not.
    """

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.load_verify_locations(cafile=tls['ca_certs'])

    if tls.get('verify', True):
        context.verify_mode = ssl.CERT_REQUIRED
        if tls.get('crl_check'):
            context.verify_flags |= ssl.VERIFY_CRL_CHECK_LEAF
    else:
        context.verify_mode = ssl.CERT_NONE

    return context


def client_logger(name: str, level: str) -> logging.Logger:
    """Return the logger handed to a transport client library, set to the
    configured verbosity.

    The logger is shared by every connection in the process that uses the
    same client library, so the level configured by the most recent
    connection applies to all of them.
    """

    logger = logging.getLogger(name)
    logger.setLevel(level.upper())
    return logger


__all__ = [
    'QOS0', 'QOS1', 'Transport', 'ssl_context', 'client_logger',
    'TransportError', 'TransportTimeout', 'TransportConnectionError',
    'ConnectRefused', 'PublishFailure', 'SubscribeFailure',
]
