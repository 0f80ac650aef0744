"""RabbitMQ publish/subscribe transport.

Topics map onto routing keys of a single topic exchange the same way the
RabbitMQ MQTT plugin maps them: ``/`` becomes ``.`` and the MQTT wildcards
``+`` and ``#`` become ``*`` and ``#``. Each transport consumes from one
exclusive queue; subscribing binds that queue to the exchange.

pika's BlockingConnection is not thread-safe, so all channel work happens
on the connection thread. Callers hand work to that thread with
``add_callback_threadsafe`` and block on a Future for the result; publisher
confirms give publishes their blocking acknowledgment.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import Callable

import pika
import pika.exceptions

from .base import (
    QOS1,
    Transport,
    ConnectRefused,
    PublishFailure,
    SubscribeFailure,
    TransportTimeout,
    client_logger,
    ssl_context,
)


logger = logging.getLogger(__name__)

exchange = 'carrier'


def routing_key(topic: str) -> str:
    key = topic.replace('/', '.')
    return '.'.join('*' if word == '+' else word for word in key.split('.'))


def topic_name(key: str) -> str:
    return key.replace('.', '/')


class RabbitTransport(Transport):
    """Transport over an AMQP 0-9-1 broker."""

    name = 'rabbitmq'

    def __init__(self, options: dict):
        Transport.__init__(self, options)

        client_logger('pika', self.options.get('log_level', 'error'))

        self._connection = None
        self._channel = None
        self._queue_name = None
        self._thread = None
        self.error = None
        self._closing = False
        self._lock = threading.Lock()

    def parameters(self) -> pika.ConnectionParameters:
        username = self.options.get('username') or 'guest'
        password = self.options.get('password') or ''

        kwargs = dict(
            host=self.options['host'],
            port=self.options['port'],
            credentials=pika.PlainCredentials(username, password),
            heartbeat=600,
            blocked_connection_timeout=300,
        )

        tls = self.options.get('tls')
        if tls:
            kwargs['ssl_options'] = pika.SSLOptions(ssl_context(tls))

        return pika.ConnectionParameters(**kwargs)

    def start(self) -> None:
        try:
            parameters = self.parameters()
        except (OSError, ValueError) as e:
            raise ConnectRefused(f"cannot start AMQP client: {e}") from e

        self._thread = threading.Thread(target=self._run, args=(parameters,), daemon=True)
        self._thread.start()

    def disconnect(self) -> None:
        self.connected.clear()

        with self._lock:
            self._closing = True
            connection = self._connection

        # Still connecting: the connection thread closes the connection
        # itself once it is established, so there is nothing to wait for.

        if connection is None:
            return

        if connection.is_open:
            connection.add_callback_threadsafe(self._stop)
        if self._thread is not None:
            self._thread.join(self.timeout)

    def subscribe(self, topic: str, qos: int = QOS1) -> int:
        def bind():
            self._channel.queue_bind(exchange=exchange, queue=self._queue_name, routing_key=routing_key(topic))
            return qos
        return self._submit(bind, SubscribeFailure, 'subscribe to ' + repr(topic))

    def unsubscribe(self, topic: str) -> None:
        def unbind():
            self._channel.queue_unbind(exchange=exchange, queue=self._queue_name, routing_key=routing_key(topic))
        self._submit(unbind, SubscribeFailure, 'unsubscribe from ' + repr(topic))

    def publish(self, topic: str, data: bytes, qos: int = QOS1):
        properties = pika.BasicProperties(delivery_mode=pika.DeliveryMode.Persistent)

        def send():
            self._channel.basic_publish(exchange=exchange, routing_key=routing_key(topic), body=data, properties=properties)
            return True
        return self._submit(send, PublishFailure, 'publish to ' + repr(topic))

    # --- connection thread ---

    def _run(self, parameters: pika.ConnectionParameters) -> None:
        connection = None

        try:
            connection = pika.BlockingConnection(parameters)

            if self._closing:
                self._abandon(connection, parameters)
                return

            channel = connection.channel()
            channel.confirm_delivery()
            channel.exchange_declare(exchange=exchange, exchange_type='topic', durable=False)

            result = channel.queue_declare(queue='', exclusive=True)
            queue_name = result.method.queue

            channel.basic_consume(queue=queue_name, on_message_callback=self._on_message)
        except pika.exceptions.AMQPError as e:
            # The session notices through the connected event timing out.
            self.error = e
            logger.info("AMQP connection to %s:%s failed: %r", parameters.host, parameters.port, e)
            if connection is not None and connection.is_open:
                connection.close()
            return

        with self._lock:
            if self._closing:
                self._abandon(connection, parameters)
                return

            self._connection = connection
            self._channel = channel
            self._queue_name = queue_name

        self.connected.set()

        try:
            channel.start_consuming()
        except pika.exceptions.AMQPError as e:
            self.error = e
            logger.info("AMQP connection lost: %r", e)
        finally:
            self.connected.clear()

        if connection.is_open:
            connection.close()

    def _abandon(self, connection, parameters) -> None:
        # disconnect() gave up on this connection while it was being set up.
        logger.info("AMQP connection to %s:%s established after disconnect; closing it", parameters.host, parameters.port)
        connection.close()

    def _stop(self) -> None:
        self._channel.stop_consuming()

    def _on_message(self, channel, method, properties, body: bytes) -> None:
        self._deliver(topic_name(method.routing_key), body)
        channel.basic_ack(delivery_tag=method.delivery_tag)

    # --- internal ---

    def _submit(self, work: Callable, failure: type, what: str):
        """Run *work* on the connection thread and wait for its result."""

        connection = self._connection
        if connection is None or not self.connected.is_set():
            raise failure(f"{what}: not connected")

        future: concurrent.futures.Future = concurrent.futures.Future()

        def run():
            try:
                future.set_result(work())
            except pika.exceptions.AMQPError as e:
                future.set_exception(e)

        try:
            connection.add_callback_threadsafe(run)
        except pika.exceptions.AMQPError as e:
            raise failure(f"{what}: {e!r}") from e

        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            raise TransportTimeout(f"{what}: no acknowledgment in {self.timeout} sec")
        except pika.exceptions.AMQPError as e:
            raise failure(f"{what}: {e!r}") from e
