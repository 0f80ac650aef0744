''' Wrapper module to select the most performant available library to handle
    the equivalent of :func:`json.loads` and :func:`json.dumps` for envelope
    encoding.
'''

# Conditional imports avoid pulling in the slower libraries when a faster
# one is present. Every variant of dumps() returns bytes.

msgspec = None
orjson = None
json = None

try:
    import msgspec
except ImportError:
    pass

if msgspec is None:
    try:
        import orjson
    except ImportError:
        pass

if msgspec is None and orjson is None:
    import json


def json_dumps(*args, **kwargs):
    return json.dumps(*args, separators=(',', ':'), **kwargs).encode()

if msgspec is not None:
    encoder = msgspec.json.Encoder()
    decoder = msgspec.json.Decoder()
    dumps = encoder.encode
    loads = decoder.decode
    errors = (msgspec.DecodeError,)
elif orjson is not None:
    dumps = orjson.dumps
    loads = orjson.loads
    errors = (orjson.JSONDecodeError,)
else:
    dumps = json_dumps
    loads = json.loads
    errors = (ValueError,)

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
