""" The envelopes carried on the message bus. There are exactly three kinds:
    a :class:`Call` expects a :class:`Reply`, a :class:`Cast` does not.
    Envelopes are built fresh for every call or cast and are read-only
    after construction.
"""

CALL = 'call'
CAST = 'cast'
REPLY = 'reply'

kinds = (CALL, CAST, REPLY)

STATUS_OK = 'ok'
STATUS_ERROR = 'error'


class Envelope:
    """ Common behavior for the envelope kinds. Subclasses declare their
        *kind* and the *fields* that appear on the wire, in order.
    """

    kind = None
    fields = ()

    def __setattr__(self, name, value):
        raise AttributeError(type(self).__name__ + ' envelopes are read-only')


    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.to_dict() == other.to_dict()


    def __repr__(self):
        pairs = ('%s=%r' % (key, getattr(self, key)) for key in self.fields)
        return type(self).__name__ + '(' + ', '.join(pairs) + ')'


    def _set(self, **values):
        for key, value in values.items():
            object.__setattr__(self, key, value)


    def to_dict(self):
        """ Return the wire representation of this envelope as a dictionary.
        """

        return dict((key, getattr(self, key)) for key in self.fields)


# end of class Envelope



class Call(Envelope):
    """ A request for *endpoint* that expects a reply on the *sender*
        topic, which is the private reply topic of the calling session.
    """

    kind = CALL
    fields = ('sender', 'endpoint', 'payload')

    def __init__(self, sender, endpoint, payload):
        _check_string('sender', sender)
        _check_string('endpoint', endpoint)
        _check_payload(payload)
        self._set(sender=sender, endpoint=endpoint, payload=payload)


    @classmethod
    def from_dict(cls, values):
        return cls(values.get('sender'), values.get('endpoint'), values.get('payload'))


# end of class Call



class Cast(Envelope):
    """ A one-way request for *endpoint*; nobody replies to a cast.
    """

    kind = CAST
    fields = ('endpoint', 'payload')

    def __init__(self, endpoint, payload):
        _check_string('endpoint', endpoint)
        _check_payload(payload)
        self._set(endpoint=endpoint, payload=payload)


    @classmethod
    def from_dict(cls, values):
        return cls(values.get('endpoint'), values.get('payload'))


# end of class Cast



class Reply(Envelope):
    """ The answer to a :class:`Call`. A reply carries either a *payload*
        or an *error* description, never both. The *payload* is opaque
        JSON-compatible data; it is usually, but not necessarily, a dict.
    """

    kind = REPLY
    fields = ('status', 'payload', 'error')

    def __init__(self, payload=None, error=None):

        if error is not None and payload is not None:
            raise ValueError('a reply carries either a payload or an error')

        if error is None:
            status = STATUS_OK
        else:
            status = STATUS_ERROR

        self._set(status=status, payload=payload, error=error)


    @property
    def ok(self):
        return self.status == STATUS_OK


    def to_dict(self):
        if self.ok:
            return {'status': STATUS_OK, 'payload': self.payload}
        return {'status': STATUS_ERROR, 'error': self.error}


    @classmethod
    def from_dict(cls, values):

        status = values.get('status', STATUS_OK)

        if status == STATUS_OK:
            return cls(payload=values.get('payload'))
        if status == STATUS_ERROR:
            error = values.get('error')
            if error is None:
                error = 'unspecified error'
            return cls(error=error)

        raise ValueError('invalid reply status: ' + repr(status))


# end of class Reply


by_kind = {
    CALL: Call,
    CAST: Cast,
    REPLY: Reply,
}


def _check_string(name, value):
    if isinstance(value, str) and value != '':
        return
    raise TypeError('%s must be a non-empty string, not %r' % (name, value))


def _check_payload(payload):
    if isinstance(payload, dict):
        return
    raise TypeError('payload must be a dict, not ' + type(payload).__name__)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
