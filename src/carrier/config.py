""" Connection configuration for carrier sessions. Process-wide values,
    the connect parameters and the credentials, are read once when a
    session connects and are never modified by a live session.

    The connect parameters live in a :class:`ConnectConfig`; the secrets
    come from a :class:`Provider` that is handed to :func:`carrier.connect`
    explicitly.
"""

import os

from . import json


default_connect_timeout = 5000   # milliseconds
default_log_level = 'error'
default_port = 1883
default_transport = 'mqtt'

default_filename = 'connection.json'

log_levels = ('debug', 'info', 'warning', 'error', 'critical')

TLS_DISABLED = 'disabled'
TLS_VERIFY_PEER = 'verify-peer'
TLS_VERIFY_NONE = 'verify-none'

tls_modes = (TLS_DISABLED, TLS_VERIFY_PEER, TLS_VERIFY_NONE)

# Historical spellings of the TLS mode; True/False are accepted too.

_tls_aliases = {
    'false': TLS_DISABLED,
    'off': TLS_DISABLED,
    'true': TLS_VERIFY_PEER,
    'verify': TLS_VERIFY_PEER,
    'unverified': TLS_VERIFY_NONE,
    'no_verify': TLS_VERIFY_NONE,
}


class ConnectConfig:
    """ The parameters needed to establish a connection to the message bus.
        Instances are read-only once constructed; use :func:`replace` to
        derive a modified copy.

        :ivar host: host name or address of the broker.
        :ivar port: broker port number.
        :ivar log_level: verbosity for the transport client library.
        :ivar tls_mode: one of 'disabled', 'verify-peer', 'verify-none'.
        :ivar tls_ca_cert: path to the CA certificate, required for TLS.
        :ivar connect_timeout: milliseconds to wait for a connection.
        :ivar transport: name of the transport backend.
    """

    fields = ('host', 'port', 'log_level', 'tls_mode', 'tls_ca_cert',
              'connect_timeout', 'transport')

    def __init__(self, host='localhost', port=default_port,
                 log_level=default_log_level, tls_mode=TLS_DISABLED,
                 tls_ca_cert=None, connect_timeout=default_connect_timeout,
                 transport=default_transport):

        values = dict()
        values['host'] = _host(host)
        values['port'] = _port(port)
        values['log_level'] = _log_level(log_level)
        values['tls_mode'] = _tls_mode(tls_mode)
        values['tls_ca_cert'] = tls_ca_cert or None
        values['connect_timeout'] = _timeout(connect_timeout)
        values['transport'] = str(transport).lower()

        for key, value in values.items():
            object.__setattr__(self, key, value)


    def __setattr__(self, name, value):
        raise AttributeError('ConnectConfig is read-only')


    def __eq__(self, other):
        if not isinstance(other, ConnectConfig):
            return NotImplemented
        return self.to_dict() == other.to_dict()


    def __repr__(self):
        pairs = ('%s=%r' % (key, value) for key, value in self.to_dict().items())
        return 'ConnectConfig(' + ', '.join(pairs) + ')'


    def replace(self, **changes):
        """ Return a new :class:`ConnectConfig` with the requested fields
            changed.
        """

        values = self.to_dict()
        values.update(changes)
        return ConnectConfig(**values)


    def to_dict(self):
        return dict((key, getattr(self, key)) for key in self.fields)


# end of class ConnectConfig



class Provider:
    """ Source of the process-wide secrets a connection needs. Subclass
        this, or use :class:`StaticProvider`, to hand credentials to
        :func:`carrier.connect` without reaching for global state.
    """

    def password(self):
        """ Return the message bus password for the internal identity, or
            None to connect without one.
        """

        return None


    def signing_key(self):
        """ Return the key (bytes) used to sign and verify envelopes, or None
            if envelopes are not signed.
        """

        return None


# end of class Provider



class StaticProvider(Provider):
    """ A :class:`Provider` with fixed values. """

    def __init__(self, password=None, signing_key=None):
        self._password = password
        if isinstance(signing_key, str):
            signing_key = signing_key.encode()
        self._signing_key = signing_key

    def password(self):
        return self._password

    def signing_key(self):
        return self._signing_key


class EnvironmentProvider(Provider):
    """ A :class:`Provider` that reads ``CARRIER_PASSWORD`` and
        ``CARRIER_SIGNING_KEY`` from the environment at the moment a
        connection is established.
    """

    def __init__(self, environ=None):
        self.environ = os.environ if environ is None else environ

    def password(self):
        return self.environ.get('CARRIER_PASSWORD') or None

    def signing_key(self):
        key = self.environ.get('CARRIER_SIGNING_KEY')
        if key:
            return key.encode()
        return None



def directory(default=None):
    """ Return the directory location where configuration files live. This
        defaults to ``$HOME/.carrier``, but can be overridden by calling this
        method with a valid path, or by setting the ``CARRIER_HOME``
        environment variable. Changes to the environment variable are
        ignored unless it is set prior to the first invocation of this
        method.
    """

    if default is not None:
        default = str(default)
        default = os.path.expandvars(default)

        if os.path.isabs(default):
            pass
        else:
            raise ValueError('the default directory must be an absolute path')

        os.environ['CARRIER_HOME'] = default
        directory.found = default


    found = directory.found

    if found is not None:
        return found

    try:
        found = os.environ['CARRIER_HOME']
    except KeyError:
        pass
    else:
        directory.found = found
        return found

    try:
        home = os.environ['HOME']
    except KeyError:
        raise RuntimeError('CARRIER_HOME and HOME environment variables not set, cannot determine carrier configuration directory')

    found = os.path.join(home, '.carrier')

    directory.found = found
    return found

directory.found = None



def load(filename=None, environ=None):
    """ Build a :class:`ConnectConfig` from the JSON configuration file
        and the environment. The file defaults to ``connection.json`` in
        the :func:`directory`; a missing file is not an error, the defaults
        apply. Environment variables take precedence over the file.
    """

    if environ is None:
        environ = os.environ

    if filename is None:
        filename = os.path.join(directory(), default_filename)

    values = dict()

    try:
        with open(filename, 'rb') as contents:
            raw = contents.read()
    except FileNotFoundError:
        pass
    else:
        try:
            loaded = json.loads(raw)
        except json.errors as e:
            raise ValueError('cannot parse %s: %s' % (filename, e))

        if not isinstance(loaded, dict):
            raise ValueError('configuration in %s must be a JSON object' % (filename))

        values.update(_from_file(loaded))

    for variable, field in _environment.items():
        try:
            value = environ[variable]
        except KeyError:
            continue
        values[field] = value

    return ConnectConfig(**values)


# Older configuration files spell a few fields differently.

_file_aliases = {
    'ssl': 'tls_mode',
    'ssl_cert': 'tls_ca_cert',
}

_environment = {
    'CARRIER_HOST': 'host',
    'CARRIER_PORT': 'port',
    'CARRIER_LOG_LEVEL': 'log_level',
    'CARRIER_SSL': 'tls_mode',
    'CARRIER_SSL_CERT': 'tls_ca_cert',
    'CARRIER_CONNECT_TIMEOUT': 'connect_timeout',
    'CARRIER_TRANSPORT': 'transport',
}


def _from_file(loaded):

    values = dict()

    for key, value in loaded.items():
        key = _file_aliases.get(key, key)
        if key in ConnectConfig.fields:
            values[key] = value
        else:
            raise ValueError('unknown configuration field: ' + repr(key))

    return values


def _host(host):
    if host is None or str(host) == '':
        raise ValueError('the broker host must be specified')
    return str(host)


def _port(port):
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ValueError('invalid port: ' + repr(port))

    if port < 1 or port > 65535:
        raise ValueError('port out of range: ' + repr(port))

    return port


def _log_level(level):
    level = str(level).lower()
    if level not in log_levels:
        raise ValueError('invalid log level: ' + repr(level))
    return level


def _tls_mode(mode):
    if mode is None or mode is False:
        return TLS_DISABLED
    if mode is True:
        return TLS_VERIFY_PEER

    mode = str(mode).lower()
    mode = _tls_aliases.get(mode, mode)

    if mode not in tls_modes:
        raise ValueError('invalid TLS mode: ' + repr(mode))
    return mode


def _timeout(timeout):
    try:
        timeout = int(timeout)
    except (TypeError, ValueError):
        raise ValueError('invalid connect timeout: ' + repr(timeout))

    if timeout < 0:
        raise ValueError('connect timeout must not be negative')
    return timeout


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
