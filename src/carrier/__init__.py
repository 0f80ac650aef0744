""" Python implementation of carrier: synchronous request/reply (call) and
    one-way notification (cast) on top of a publish/subscribe message bus.
    Callers connect a :class:`Session` and never deal with reply topics,
    subscription lifecycle, or the transport underneath.
"""

# Utility components.

from . import json
from . import errors

# Submodules used by multiple other components.

from . import config
from . import protocol
from . import transport

# Primary public-facing interfaces.

from . import session
connect = session.connect

from .session import Session
from .config import ConnectConfig, Provider, StaticProvider, EnvironmentProvider
from .errors import (
    CarrierError,
    CallTimeout,
    ConnectRefused,
    ConnectTimeout,
    DecodeError,
    PublishFailure,
    RemoteError,
    SessionClosed,
)

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
