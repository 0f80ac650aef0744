"""Sessions: validated connections to the message bus.

A :class:`Session` owns exactly one transport connection and one private
reply topic. On top of the transport's publish/subscribe it offers
:meth:`Session.call`, which publishes a request and blocks for the
correlated reply, and :meth:`Session.cast`, which publishes and returns.

Timeouts in this module are expressed in milliseconds.
"""

from __future__ import annotations

import ipaddress
import logging
import queue
import socket
import threading
import uuid
from typing import Callable, Dict, Optional, Tuple

from paho.mqtt.client import topic_matches_sub

from . import config as _config
from . import transport as _transport
from .errors import (
    CallTimeout,
    ConnectRefused,
    ConnectTimeout,
    PublishFailure,
    ReceiveTimeout,
    RemoteError,
    SessionClosed,
    TransportError,
)
from .protocol import codec
from .protocol.message import Call, Cast, Envelope, Reply
from .transport.base import QOS1, Transport


logger = logging.getLogger(__name__)

# Distinguishes infrastructure connections from user connections on the bus.
internal_username = 'COG_INTERNAL'

reply_prefix = 'carrier/call/reply'

Callback = Callable[[str, bytes], None]


class PendingCall:
    """Synchronization for one outstanding call: the session's delivery
    path completes it, the calling thread waits on it.
    """

    def __init__(self, message: Call):
        self.message = message
        self.response: Optional[bytes] = None
        self.rep_event = threading.Event()

    @property
    def done(self) -> bool:
        return self.rep_event.is_set()

    def wait(self, timeout: Optional[float]) -> Optional[bytes]:
        """Block up to *timeout* seconds; return the raw reply, or None if
        none arrived.
        """
        self.rep_event.wait(timeout)
        return self.response

    def _complete(self, response: bytes) -> None:
        self.response = response
        self.rep_event.set()


class Session:
    """One live connection to the message bus.

    Use :func:`connect` to create a session; the constructor assumes the
    transport has already reported a logical connection.

    :ivar id: unique identifier generated for this session.
    :ivar reply_topic: private topic on which replies to this session's
        calls arrive; derived from *id*.
    :ivar transport: the exclusively owned :class:`Transport`.
    """

    def __init__(self, transport: Transport, signing_key: Optional[bytes] = None):
        self.id = uuid.uuid4().hex
        self.reply_topic = reply_prefix + '/' + self.id
        self.transport = transport
        self.signing_key = signing_key
        self.closed = False

        self._call_lock = threading.Lock()
        self._pending: Optional[PendingCall] = None
        self._pending_lock = threading.Lock()
        self._stale: queue.SimpleQueue = queue.SimpleQueue()
        self._inbox: queue.SimpleQueue = queue.SimpleQueue()
        self._callbacks: Dict[str, Optional[Callback]] = {}
        self._callbacks_lock = threading.Lock()

        # Subscription callbacks run here, never on the transport's network
        # thread: a callback that publishes blocks until that thread has
        # processed the broker's acknowledgment.

        self._dispatch: queue.SimpleQueue = queue.SimpleQueue()
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name='carrier-dispatch-' + self.id, daemon=True)
        self._dispatcher.start()

        transport.deliver = self._deliver

        try:
            transport.subscribe(self.reply_topic, QOS1)
        except TransportError:
            self._stop_dispatcher()
            raise

    def __repr__(self) -> str:
        state = 'closed' if self.closed else 'open'
        return f"<Session {self.id} via {self.transport.name} ({state})>"

    def __enter__(self) -> 'Session':
        return self

    def __exit__(self, *exc) -> None:
        self.disconnect()

    # --- connection ---

    def disconnect(self) -> None:
        """Tear down the transport connection. Any later operation on this
        session raises SessionClosed; disconnecting twice is harmless.
        """

        if self.closed:
            return

        self.closed = True
        self.transport.disconnect()
        self._stop_dispatcher()
        logger.info("Session %s disconnected", self.id)

    # --- publish/subscribe ---

    def subscribe(self, topic: str, callback: Optional[Callback] = None) -> int:
        """Subscribe to *topic* (MQTT filter syntax) and block until the
        broker confirms. Messages arriving on the topic go to
        ``callback(topic, data)`` if given, otherwise to :meth:`receive`.
        Returns the granted quality of service.
        """

        self._check()
        granted = self.transport.subscribe(topic, QOS1)

        with self._callbacks_lock:
            self._callbacks[topic] = callback

        return granted

    def unsubscribe(self, topic: str) -> None:
        self._check()

        if topic == self.reply_topic:
            raise ValueError('the private reply topic stays subscribed for the life of the session')

        self.transport.unsubscribe(topic)

        with self._callbacks_lock:
            self._callbacks.pop(topic, None)

    def receive(self, timeout: Optional[int] = None) -> Tuple[str, bytes]:
        """Return the next (topic, data) pair delivered for a subscription
        that has no callback. Raises ReceiveTimeout if nothing arrives within
        *timeout* milliseconds; None waits indefinitely.
        """

        self._check()

        seconds = None if timeout is None else timeout / 1000.0

        try:
            return self._inbox.get(timeout=seconds)
        except queue.Empty:
            raise ReceiveTimeout(f"nothing received in {timeout} ms")

    def publish(self, message: Envelope, topic: str, threshold: Optional[int] = None):
        """Encode *message* and publish it on *topic*, blocking until the
        transport acknowledges receipt. If *threshold* is given, a warning is
        logged when the encoded message is larger than that many bytes; the
        message is published anyway.
        """

        self._check()

        encoded = codec.encode(message, self.signing_key)

        if threshold is not None:
            size = len(encoded)
            if size > threshold:
                logger.warning("Message potentially too long (%d bytes)", size)

        try:
            return self.transport.publish(topic, encoded, QOS1)
        except PublishFailure:
            raise
        except TransportError as e:
            raise PublishFailure(f"publish to {topic!r} failed: {e}") from e

    # --- request/reply ---

    def call(self, topic: str, endpoint: str, payload: dict, timeout: int, threshold: Optional[int] = None):
        """Invoke *endpoint* by publishing a request on *topic*, and block
        until the reply arrives or *timeout* milliseconds elapse.

        Returns the reply payload. Raises CallTimeout if no reply arrives in
        time, PublishFailure if the request could not be published,
        DecodeError if the reply is malformed, and RemoteError if the peer
        answered with an error.

        Replies left over from earlier calls that timed out are discarded
        before the request goes out. A leftover reply that only arrives
        while this call is waiting is indistinguishable from the real one.
        Calls on one session are serialized.
        """

        self._check()
        message = Call(self.reply_topic, endpoint, payload)

        with self._call_lock:
            self._flush()

            pending = PendingCall(message)
            with self._pending_lock:
                self._pending = pending

            try:
                self.publish(message, topic, threshold)
                response = pending.wait(timeout / 1000.0)
            finally:
                with self._pending_lock:
                    self._pending = None

        if response is None:
            raise CallTimeout(f"{endpoint} via {topic}: no reply in {timeout} ms")

        reply = codec.decode_reply(response, self.signing_key)

        if not reply.ok:
            raise RemoteError(reply.error)

        return reply.payload

    def cast(self, topic: str, endpoint: str, payload: dict, threshold: Optional[int] = None):
        """Publish a one-way request for *endpoint* on *topic*. Returns the
        transport acknowledgment as soon as the publish is acknowledged.
        """

        self._check()
        message = Cast(endpoint, payload)
        return self.publish(message, topic, threshold)

    def reply(self, request: Call, payload=None, error=None):
        """Answer *request* with either a *payload* or an *error*."""

        self._check()
        message = Reply(payload=payload, error=error)
        return self.publish(message, request.sender)

    # --- internal ---

    def _check(self) -> None:
        if self.closed:
            raise SessionClosed(f"session {self.id} is disconnected")

    def _flush(self) -> None:
        """Drop every reply that arrived while no call was waiting."""

        dropped = 0
        while True:
            try:
                self._stale.get_nowait()
            except queue.Empty:
                break
            dropped += 1

        if dropped:
            logger.debug("Session %s discarded %d stale replies", self.id, dropped)

    def _deliver(self, topic: str, data: bytes) -> None:
        """Route one incoming message; called from the transport's thread."""

        if topic == self.reply_topic:
            with self._pending_lock:
                pending = self._pending
                if pending is not None and not pending.done:
                    pending._complete(data)
                    return
            logger.debug("Session %s holding unexpected reply", self.id)
            self._stale.put(data)
            return

        with self._callbacks_lock:
            matched = [callback for pattern, callback in self._callbacks.items()
                       if topic_matches_sub(pattern, topic)]

        callbacks = [callback for callback in matched if callback is not None]

        if not callbacks or len(callbacks) < len(matched):
            self._inbox.put((topic, data))

        if callbacks:
            self._dispatch.put((topic, data, callbacks))

    def _dispatch_loop(self) -> None:
        while True:
            item = self._dispatch.get()
            if item is None:
                return

            topic, data, callbacks = item
            for callback in callbacks:
                try:
                    callback(topic, data)
                except Exception:
                    logger.exception("Subscription callback for %r failed", topic)

    def _stop_dispatcher(self) -> None:
        self._dispatch.put(None)

        # A callback may disconnect its own session.
        if threading.current_thread() is not self._dispatcher:
            self._dispatcher.join(self.transport.timeout)


def connect(config: Optional[_config.ConnectConfig] = None,
            provider: Optional[_config.Provider] = None,
            timeout: Optional[int] = None,
            transport=None) -> Session:
    """Connect to the message bus and return a ready :class:`Session`.

    *config* defaults to :func:`carrier.config.load`, *provider* to an
    :class:`carrier.config.EnvironmentProvider`. *timeout* (milliseconds)
    bounds the wait for the transport to report a connection and defaults
    to ``config.connect_timeout``. *transport* is a :class:`Transport`
    subclass, or any callable taking the connect options and returning a
    transport; by default it is chosen by ``config.transport``.

    Raises ConnectTimeout if the connection is not established in time, and
    ConnectRefused if the transport cannot be started.
    """

    if config is None:
        config = _config.load()
    if provider is None:
        provider = _config.EnvironmentProvider()
    if timeout is None:
        timeout = config.connect_timeout
    if transport is None:
        transport = _transport.get(config.transport)

    options = connect_options(config, provider, resolve=getattr(transport, 'resolve_host', True))

    try:
        client = transport(options)
        client.start()
    except ConnectRefused:
        raise
    except OSError as e:
        raise ConnectRefused(f"cannot start transport for {config.host}:{config.port}: {e}") from e

    # The transport returns before a network connection exists. Only hand
    # out sessions whose transport has confirmed the connection.

    if not client.connected.wait(timeout / 1000.0):
        logger.info("Connection not established")
        client.disconnect()
        raise ConnectTimeout(f"{config.host}:{config.port}: no connection in {timeout} ms")

    try:
        session = Session(client, provider.signing_key())
    except TransportError:
        client.disconnect()
        raise

    logger.info("Session %s connected to %s:%s", session.id, config.host, config.port)
    return session


def connect_options(config: _config.ConnectConfig, provider: _config.Provider, resolve: bool = True) -> dict:
    """Merge *config* with the internal credentials into the options
    dictionary handed to a transport.
    """

    host = config.host
    if resolve:
        host = resolve_host(host)

    options = dict()
    options['host'] = host
    options['port'] = config.port
    options['log_level'] = config.log_level
    options['client_id'] = 'carrier-' + uuid.uuid4().hex
    options['username'] = internal_username
    options['password'] = provider.password()
    options['tls'] = tls_options(config)

    return options


def resolve_host(host: str) -> str:
    """Return an address for *host*; IPv4 and IPv6 addresses pass through
    unchanged.
    """

    try:
        ipaddress.ip_address(host)
    except ValueError:
        pass
    else:
        return host

    try:
        found = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except OSError as e:
        raise ConnectRefused(f"cannot resolve {host!r}: {e}") from e

    if not found:
        raise ConnectRefused(f"cannot resolve {host!r}: no addresses")

    return found[0][4][0]


def tls_options(config: _config.ConnectConfig) -> Optional[dict]:
    """Return the transport TLS options for *config*, or None if the
    connection is not to use TLS.

    A TLS mode without a CA certificate is a configuration error, but not a
    fatal one: it is logged and the connection proceeds without TLS.
    """

    if config.tls_mode == _config.TLS_DISABLED:
        return None

    if not config.tls_ca_cert:
        logger.error("TLS mode %r requires a CA certificate (tls_ca_cert); TLS client connections are disabled.", config.tls_mode)
        return None

    tls = dict()
    tls['ca_certs'] = config.tls_ca_cert
    tls['verify'] = config.tls_mode == _config.TLS_VERIFY_PEER
    tls['crl_check'] = True

    return tls
