import logging
import socket
import time

import carrier
import pytest

from carrier import session as carrier_session
from carrier.transport import loopback


def test_connect(session, broker):

    assert session.id
    assert session.id in session.reply_topic
    assert session.reply_topic == 'carrier/call/reply/' + session.id
    assert not session.closed

    # The private reply topic is subscribed from the start.

    assert session.transport.subscriptions == [session.reply_topic]
    assert session.transport in broker.clients


def test_independent_sessions(broker, bus_config, provider):

    first = carrier.connect(bus_config, provider)
    second = carrier.connect(bus_config, provider)

    assert first.id != second.id
    assert first.reply_topic != second.reply_topic
    assert first.transport is not second.transport

    first.disconnect()
    second.disconnect()


def test_credentials(session):

    options = session.transport.options

    assert options['username'] == 'COG_INTERNAL'
    assert options['password'] == 'secret'
    assert options['host'] == 'bus.local'
    assert options['port'] == 1883
    assert options['log_level'] == 'error'
    assert options['tls'] is None
    assert options['client_id'].startswith('carrier-')


def test_connect_timeout(broker, provider):

    # A transport that never reports a connection.

    broker.online = False
    settings = carrier.ConnectConfig(host='bus.local', port=1883, transport='loopback', connect_timeout=100)

    begin = time.monotonic()

    with pytest.raises(carrier.ConnectTimeout):
        carrier.connect(settings, provider)

    elapsed = time.monotonic() - begin

    assert elapsed >= 0.095
    assert elapsed < 0.5

    # Nothing is left attached to the broker.

    assert broker.clients == ()


def test_timeout_argument(broker, bus_config, provider):

    broker.online = False
    begin = time.monotonic()

    with pytest.raises(carrier.ConnectTimeout):
        carrier.connect(bus_config.replace(connect_timeout=5000), provider, timeout=50)

    assert time.monotonic() - begin < 0.5


def test_connect_timeout_is_transport_error():
    assert issubclass(carrier.ConnectTimeout, carrier.errors.TransportTimeout)
    assert issubclass(carrier.ConnectTimeout, carrier.ConnectRefused)
    assert issubclass(carrier.CallTimeout, carrier.errors.TransportError)
    assert issubclass(carrier.ConnectRefused, carrier.errors.TransportConnectionError)


def test_start_failure(bus_config, provider):

    class Unreachable(loopback.LoopbackTransport):
        def start(self):
            raise ConnectionRefusedError('connection refused')

    with pytest.raises(carrier.ConnectRefused):
        carrier.connect(bus_config, provider, transport=Unreachable)


def test_refused_propagates(bus_config, provider):

    class Refusing(loopback.LoopbackTransport):
        def start(self):
            raise carrier.ConnectRefused('not today')

    with pytest.raises(carrier.ConnectRefused) as caught:
        carrier.connect(bus_config, provider, transport=Refusing)

    assert 'not today' in str(caught.value)


def test_explicit_transport(bus_config, provider):

    private = loopback.Broker()

    class Private(loopback.LoopbackTransport):
        def __init__(self, options):
            loopback.LoopbackTransport.__init__(self, options, private)

    with carrier.connect(bus_config, provider, transport=Private) as connected:
        assert connected.transport.broker is private
        assert private.clients == (connected.transport,)

    assert connected.closed
    assert private.clients == ()


def test_default_provider(broker, bus_config, monkeypatch):

    monkeypatch.setenv('CARRIER_PASSWORD', 'from-environment')

    with carrier.connect(bus_config) as connected:
        assert connected.transport.options['password'] == 'from-environment'


def test_default_config(broker, tmp_path, monkeypatch, provider):

    filename = tmp_path / 'connection.json'
    filename.write_bytes(b'{"host": "bus.local", "transport": "loopback"}')

    monkeypatch.setattr(carrier.config.directory, 'found', str(tmp_path))

    with carrier.connect(provider=provider) as connected:
        assert connected.transport.broker is broker


def test_tls_without_certificate(broker, bus_config, provider, caplog):

    settings = bus_config.replace(tls_mode='verify-peer')

    with caplog.at_level(logging.ERROR, logger='carrier.session'):
        connected = carrier.connect(settings, provider)

    # Misconfigured TLS is not fatal: the connection works, without TLS.

    assert not connected.closed
    assert connected.transport.options['tls'] is None

    errors = [record for record in caplog.records if record.levelno == logging.ERROR]
    assert len(errors) == 1
    assert 'CA certificate' in errors[0].getMessage()

    connected.disconnect()


def test_tls_options():

    settings = carrier.ConnectConfig(host='bus.local', tls_mode='verify-peer', tls_ca_cert='/etc/carrier/ca.pem')
    tls = carrier_session.tls_options(settings)
    assert tls == {'ca_certs': '/etc/carrier/ca.pem', 'verify': True, 'crl_check': True}

    tls = carrier_session.tls_options(settings.replace(tls_mode='verify-none'))
    assert tls == {'ca_certs': '/etc/carrier/ca.pem', 'verify': False, 'crl_check': True}

    assert carrier_session.tls_options(settings.replace(tls_mode='disabled')) is None


def test_host_resolution(monkeypatch, provider):

    looked_up = list()

    def getaddrinfo(host, port, type=0):
        looked_up.append(host)
        return [(socket.AF_INET, socket.SOCK_STREAM, 6, '', ('10.0.0.5', 0))]

    monkeypatch.setattr(socket, 'getaddrinfo', getaddrinfo)

    settings = carrier.ConnectConfig(host='bus.local')
    options = carrier_session.connect_options(settings, provider)

    assert options['host'] == '10.0.0.5'
    assert looked_up == ['bus.local']

    options = carrier_session.connect_options(settings, provider, resolve=False)
    assert options['host'] == 'bus.local'


def test_address_passthrough(monkeypatch):

    def getaddrinfo(host, port, type=0):
        raise AssertionError('addresses are not looked up')

    monkeypatch.setattr(socket, 'getaddrinfo', getaddrinfo)

    assert carrier_session.resolve_host('10.0.0.5') == '10.0.0.5'
    assert carrier_session.resolve_host('::1') == '::1'
    assert carrier_session.resolve_host('fd00::5') == 'fd00::5'


def test_ipv6_only_host(monkeypatch):

    def getaddrinfo(host, port, type=0):
        return [(socket.AF_INET6, socket.SOCK_STREAM, 6, '', ('fd00::5', 0, 0, 0))]

    monkeypatch.setattr(socket, 'getaddrinfo', getaddrinfo)

    assert carrier_session.resolve_host('bus6.local') == 'fd00::5'


def test_unresolvable_host(monkeypatch, provider):

    def getaddrinfo(host, port, type=0):
        raise socket.gaierror(-2, 'Name or service not known')

    monkeypatch.setattr(socket, 'getaddrinfo', getaddrinfo)

    with pytest.raises(carrier.ConnectRefused):
        carrier.connect(carrier.ConnectConfig(host='nowhere.invalid'), provider)


def test_disconnect(session, broker):

    transport = session.transport
    dispatcher = session._dispatcher
    session.disconnect()

    assert session.closed
    assert not transport.is_open
    assert broker.clients == ()
    assert not dispatcher.is_alive()

    # A second disconnect is harmless; everything else is refused.

    session.disconnect()

    with pytest.raises(carrier.SessionClosed):
        session.call('rpc/lookup', 'lookup', {}, 100)

    with pytest.raises(carrier.SessionClosed):
        session.cast('rpc/lookup', 'lookup', {})

    with pytest.raises(carrier.SessionClosed):
        session.subscribe('events/#')


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
