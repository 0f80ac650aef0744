"""Exceptions raised by carrier.

Transport errors are never retried here; they surface to the immediate
caller, who decides what to do about them.
"""


class CarrierError(Exception):
    """Base class for all carrier errors."""


class TransportError(CarrierError):
    """Base class for all transport-layer errors."""


class TransportTimeout(TransportError):
    """An operation did not complete within its time bound."""


class CallTimeout(TransportTimeout):
    """No reply arrived for a call within its timeout."""


class ReceiveTimeout(TransportTimeout):
    """Nothing arrived in the session inbox within the timeout."""


class TransportConnectionError(TransportError):
    """The transport could not establish or maintain a connection."""


class ConnectRefused(TransportConnectionError):
    """The transport client could not be started, or refused the connection."""


class ConnectTimeout(TransportTimeout, ConnectRefused):
    """The transport did not report a logical connection in time."""


class PublishFailure(TransportError):
    """The transport rejected a publish or failed to acknowledge it."""


class SubscribeFailure(TransportError):
    """The transport rejected a subscription."""


class DecodeError(CarrierError, ValueError):
    """A received message could not be decoded as the expected envelope."""


class SignatureError(DecodeError):
    """A signed message failed verification."""


class RemoteError(CarrierError):
    """The peer answered a call with an error reply.

    :ivar error: the error description carried by the reply.
    """

    def __init__(self, error):
        self.error = error
        CarrierError.__init__(self, 'remote error: ' + repr(error))


class SessionClosed(CarrierError):
    """The session was already disconnected."""
