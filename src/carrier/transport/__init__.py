"""Transport layer implementations.

Backends are imported on first use, so that only the client library for
the selected message bus needs to be installed.
"""

import importlib

from .base import (
    QOS0,
    QOS1,
    Transport,
    TransportError,
    TransportTimeout,
    TransportConnectionError,
)

backends = {
    'mqtt': ('.mqtt', 'MqttTransport'),
    'rabbitmq': ('.rabbitmq', 'RabbitTransport'),
    'loopback': ('.loopback', 'LoopbackTransport'),
}


def get(name):
    """ Return the :class:`Transport` subclass registered as *name*.
    """

    try:
        module, attribute = backends[name]
    except KeyError:
        raise ValueError(f"unknown transport backend: {name!r}")

    module = importlib.import_module(module, __name__)
    return getattr(module, attribute)

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
