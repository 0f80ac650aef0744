""" A self-contained demonstration of carrier calls and casts, using the
    in-process loopback transport: one session serves an 'echo' endpoint,
    another session calls it.
"""

import logging

import carrier
from carrier.protocol import codec


class Echo:

    def __init__(self, session, topic):
        self.session = session
        session.subscribe(topic, self.handle)


    def handle(self, topic, data):
        request = codec.decode_call(data, self.session.signing_key)

        if request.endpoint == 'echo':
            self.session.reply(request, request.payload)
        else:
            self.session.reply(request, error='unknown endpoint: ' + request.endpoint)


# end of class Echo



def main():

    logging.basicConfig(level=logging.INFO)

    config = carrier.ConnectConfig(host='localhost', transport='loopback')
    provider = carrier.StaticProvider(password='not-a-secret')

    with carrier.connect(config, provider) as server, carrier.connect(config, provider) as client:

        Echo(server, 'example/echo')

        print(client.call('example/echo', 'echo', {'hello': 'world'}, timeout=1000))

        try:
            client.call('example/echo', 'shout', {}, timeout=1000)
        except carrier.RemoteError as e:
            print('refused:', e.error)

        try:
            client.call('example/nobody', 'echo', {}, timeout=200)
        except carrier.CallTimeout as e:
            print('timed out:', e)

        client.cast('example/echo-log', 'note', {'level': 'info'})


if __name__ == '__main__':
    main()

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
