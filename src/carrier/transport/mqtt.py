"""MQTT publish/subscribe transport, backed by paho-mqtt.

The paho network loop runs in its own thread (``loop_start``); the broker's
CONNACK, SUBACK and UNSUBACK arrive there and release whichever caller is
blocked waiting on them. Publish acknowledgment (PUBACK for QoS 1) is
tracked by paho itself.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List

import paho.mqtt.client as mqtt

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

keepalive = 60


class MqttTransport(Transport):
    """Transport over an MQTT 3.1.1 broker."""

    name = 'mqtt'

    def __init__(self, options: dict):
        Transport.__init__(self, options)

        self._acks: Dict[int, List] = {}
        self._acks_ready = threading.Condition()

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.options.get('client_id', ''),
            clean_session=True,
            protocol=mqtt.MQTTv311,
        )

        client.enable_logger(client_logger(__name__ + '.client', self.options.get('log_level', 'error')))

        username = self.options.get('username')
        if username:
            client.username_pw_set(username, self.options.get('password'))

        tls = self.options.get('tls')
        if tls:
            client.tls_set_context(ssl_context(tls))
            # Host names are checked (or not) by the context, not by paho.
            client.tls_insecure_set(True)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe
        client.on_unsubscribe = self._on_unsubscribe

        self.client = client

    def start(self) -> None:
        host = self.options['host']
        port = self.options['port']

        try:
            self.client.connect_async(host, port, keepalive=keepalive)
            self.client.loop_start()
        except (OSError, ValueError) as e:
            raise ConnectRefused(f"cannot start MQTT client for {host}:{port}: {e}") from e

    def disconnect(self) -> None:
        self.connected.clear()
        self.client.disconnect()
        self.client.loop_stop()

    def subscribe(self, topic: str, qos: int = QOS1) -> int:
        rc, mid = self.client.subscribe(topic, qos)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise SubscribeFailure(f"subscribe to {topic!r} failed: {mqtt.error_string(rc)}")
        codes = self._wait_ack(mid, 'subscribe to ' + repr(topic))

        for code in codes:
            if code.is_failure:
                raise SubscribeFailure(f"broker refused subscription to {topic!r}: {code}")

        return int(codes[0].value) if codes else qos

    def unsubscribe(self, topic: str) -> None:
        rc, mid = self.client.unsubscribe(topic)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise SubscribeFailure(f"unsubscribe from {topic!r} failed: {mqtt.error_string(rc)}")
        self._wait_ack(mid, 'unsubscribe from ' + repr(topic))

    def publish(self, topic: str, data: bytes, qos: int = QOS1):
        info = self.client.publish(topic, data, qos=qos)

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishFailure(f"publish to {topic!r} failed: {mqtt.error_string(info.rc)}")

        try:
            info.wait_for_publish(timeout=self.timeout)
        except (RuntimeError, ValueError) as e:
            raise PublishFailure(f"publish to {topic!r} failed: {e}") from e

        if not info.is_published():
            raise PublishFailure(f"publish to {topic!r}: no acknowledgment in {self.timeout} sec")

        return info.mid

    # --- paho callbacks, called from the network thread ---

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logger.info("MQTT broker refused connection: %s", reason_code)
            return
        self.connected.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        self.connected.clear()
        if reason_code.is_failure:
            logger.info("MQTT connection lost: %s", reason_code)

    def _on_message(self, client, userdata, message) -> None:
        self._deliver(message.topic, message.payload)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties) -> None:
        self._complete_ack(mid, list(reason_code_list))

    def _on_unsubscribe(self, client, userdata, mid, reason_code_list, properties) -> None:
        self._complete_ack(mid, list(reason_code_list))

    # --- internal ---

    def _complete_ack(self, mid: int, codes: List) -> None:
        with self._acks_ready:
            self._acks[mid] = codes
            self._acks_ready.notify_all()

    def _wait_ack(self, mid: int, what: str) -> List:
        # Acknowledgments are recorded by mid whether or not anyone is
        # waiting yet, so one that arrives early is not lost.
        with self._acks_ready:
            if not self._acks_ready.wait_for(lambda: mid in self._acks, self.timeout):
                raise TransportTimeout(f"{what}: no acknowledgment in {self.timeout} sec")
            return self._acks.pop(mid)

