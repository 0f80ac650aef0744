""" Wire-level protocol for carrier: the three envelope kinds and the codec
    that maps them to and from bytes. Nothing in this package knows about
    transports or sessions.
"""

from . import message
from . import codec

from .message import Call, Cast, Reply, Envelope
from .codec import encode, decode

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
