import time

import carrier
import pytest

from carrier.transport import rabbitmq


def test_routing_keys():

    assert rabbitmq.routing_key('carrier/call/reply/abc123') == 'carrier.call.reply.abc123'
    assert rabbitmq.routing_key('sensors/+/temperature') == 'sensors.*.temperature'
    assert rabbitmq.routing_key('alarms/#') == 'alarms.#'
    assert rabbitmq.routing_key('plain') == 'plain'


def test_topic_names():
    assert rabbitmq.topic_name('carrier.call.reply.abc123') == 'carrier/call/reply/abc123'


def test_parameters():

    options = {
        'host': '10.0.0.5',
        'port': 5672,
        'username': 'COG_INTERNAL',
        'password': 'secret',
        'log_level': 'error',
        'tls': None,
    }

    transport = rabbitmq.RabbitTransport(options)
    parameters = transport.parameters()

    assert parameters.host == '10.0.0.5'
    assert parameters.port == 5672
    assert parameters.credentials.username == 'COG_INTERNAL'
    assert parameters.credentials.password == 'secret'
    assert parameters.ssl_options is None
    assert not transport.is_open


def test_not_connected():

    transport = rabbitmq.RabbitTransport({'host': 'localhost', 'port': 5672})

    with pytest.raises(rabbitmq.PublishFailure):
        transport.publish('anything', b'data')

    with pytest.raises(rabbitmq.SubscribeFailure):
        transport.subscribe('anything')

def test_connect_timeout_while_connecting(monkeypatch):

    # The broker takes longer to accept the connection than the session is
    # willing to wait for it.

    opened = list()

    class SlowConnection:

        def __init__(self, parameters):
            time.sleep(0.3)
            self.is_open = True
            opened.append(self)

        def channel(self):
            return SlowChannel()

        def close(self):
            self.is_open = False

    class SlowChannel:

        def __getattr__(self, name):
            return lambda *args, **kwargs: None

        def queue_declare(self, queue='', exclusive=False):
            raise AssertionError('a connection given up on is not set up')

    monkeypatch.setattr(rabbitmq.pika, 'BlockingConnection', SlowConnection)

    settings = carrier.ConnectConfig(host='127.0.0.1', port=5672, transport='rabbitmq', connect_timeout=100)
    provider = carrier.StaticProvider(password='secret')

    begin = time.monotonic()

    with pytest.raises(carrier.ConnectTimeout):
        carrier.connect(settings, provider)

    assert time.monotonic() - begin < 0.25

    # Once the late connection is established it is closed straight away,
    # not left consuming.

    deadline = time.monotonic() + 2
    while not opened and time.monotonic() < deadline:
        time.sleep(0.01)

    assert len(opened) == 1

    while opened[0].is_open and time.monotonic() < deadline:
        time.sleep(0.01)

    assert not opened[0].is_open


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
