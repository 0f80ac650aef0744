import carrier
import pytest

from carrier.protocol import codec
from carrier.transport import loopback


@pytest.fixture
def broker():

    # Every test gets its own in-process broker; sessions connecting to
    # bus.local:1883 with the loopback transport all land on it.

    loopback.reset()
    found = loopback.broker('bus.local', 1883)

    yield found

    loopback.reset()


@pytest.fixture
def bus_config():
    return carrier.ConnectConfig(host='bus.local', port=1883, transport='loopback', connect_timeout=100)


@pytest.fixture
def provider():
    return carrier.StaticProvider(password='secret')


@pytest.fixture
def session(broker, bus_config, provider):
    connected = carrier.connect(bus_config, provider)
    yield connected
    connected.disconnect()


@pytest.fixture
def peer(broker, bus_config, provider):
    connected = carrier.connect(bus_config, provider)
    yield connected
    connected.disconnect()


@pytest.fixture
def serve():
    return _serve


def _serve(peer, topic, handler):
    """ Answer every call arriving on *topic* with whatever *handler*
        returns for the decoded :class:`carrier.protocol.Call`.
    """

    def respond(_topic, data):
        request = codec.decode_call(data, peer.signing_key)
        peer.reply(request, handler(request))

    peer.subscribe(topic, respond)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
