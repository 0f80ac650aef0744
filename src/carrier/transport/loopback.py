"""In-process broker and transport.

The loopback transport moves messages between sessions of the same
process without a network. It follows MQTT topic-filter semantics, so code
written against it behaves the same against a real broker; the test suite
relies on it.

Brokers are cached by (host, port): two sessions connecting to the same
address share a broker, sessions connecting to different addresses do not.
"""

from __future__ import annotations

import collections
import itertools
import threading
from typing import Deque, Dict, List, Tuple

from paho.mqtt.client import topic_matches_sub

from .base import QOS1, Transport, ConnectRefused, PublishFailure, SubscribeFailure


class Broker:
    """A minimal message broker.

    :ivar online: when False, transports never see the connected event.
    :ivar accepting: when False, publishes are rejected.
    :ivar published: the most recent (topic, data) pairs accepted, oldest
        first; at most *history* are kept.
    """

    def __init__(self, history: int = 1000):
        self.online = True
        self.accepting = True
        self.published: Deque[Tuple[str, bytes]] = collections.deque(maxlen=history)
        self._clients: List['LoopbackTransport'] = []
        self._lock = threading.Lock()
        self._mids = itertools.count(1)

    @property
    def clients(self) -> Tuple['LoopbackTransport', ...]:
        with self._lock:
            return tuple(self._clients)

    def attach(self, client: 'LoopbackTransport') -> None:
        with self._lock:
            self._clients.append(client)
            online = self.online
        if online:
            client.connected.set()

    def detach(self, client: 'LoopbackTransport') -> None:
        with self._lock:
            try:
                self._clients.remove(client)
            except ValueError:
                pass

    def publish(self, topic: str, data: bytes) -> int:
        with self._lock:
            if not self.accepting:
                raise PublishFailure(f"broker rejected publish to {topic!r}")
            self.published.append((topic, data))
            mid = next(self._mids)
            receivers = [client for client in self._clients if client.wants(topic)]

        # Deliver outside the lock; receivers are free to publish in turn.
        for client in receivers:
            client._deliver(topic, data)

        return mid


# end of class Broker


_brokers: Dict[Tuple[str, int], Broker] = {}
_brokers_lock = threading.Lock()


def broker(host: str = 'localhost', port: int = 1883) -> Broker:
    """Return the broker for (*host*, *port*), creating it if needed."""

    key = (str(host), int(port))
    with _brokers_lock:
        found = _brokers.get(key)
        if found is None:
            found = Broker()
            _brokers[key] = found
        return found


def reset() -> None:
    """Forget every cached broker."""

    with _brokers_lock:
        _brokers.clear()


class LoopbackTransport(Transport):
    """Transport attached to an in-process :class:`Broker`."""

    name = 'loopback'
    resolve_host = False

    def __init__(self, options: dict, broker_instance: Broker = None):
        Transport.__init__(self, options)
        self.broker = broker_instance
        self.subscriptions: List[str] = []
        self._lock = threading.Lock()

    def start(self) -> None:
        if self.broker is None:
            try:
                self.broker = broker(self.options['host'], self.options['port'])
            except (KeyError, TypeError, ValueError) as e:
                raise ConnectRefused(f"invalid loopback address: {e!r}") from e
        self.broker.attach(self)

    def disconnect(self) -> None:
        self.connected.clear()
        if self.broker is not None:
            self.broker.detach(self)

    def subscribe(self, topic: str, qos: int = QOS1) -> int:
        if not self.connected.is_set():
            raise SubscribeFailure(f"subscribe to {topic!r}: not connected")
        with self._lock:
            if topic not in self.subscriptions:
                self.subscriptions.append(topic)
        return qos

    def unsubscribe(self, topic: str) -> None:
        with self._lock:
            try:
                self.subscriptions.remove(topic)
            except ValueError:
                pass

    def publish(self, topic: str, data: bytes, qos: int = QOS1):
        if not self.connected.is_set():
            raise PublishFailure(f"publish to {topic!r}: not connected")
        return self.broker.publish(topic, bytes(data))

    def wants(self, topic: str) -> bool:
        with self._lock:
            subscriptions = tuple(self.subscriptions)
        for pattern in subscriptions:
            if topic_matches_sub(pattern, topic):
                return True
        return False
