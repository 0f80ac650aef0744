"""Envelope codec: envelopes <-> bytes on the wire.

Each envelope is a JSON object. When a signing key is supplied the object
is wrapped together with its HMAC-SHA256 signature::

    {"data": "<envelope JSON text>", "signature": "<hex digest>"}

Decoding is always told which kind of envelope to expect; the kind is
never guessed from the message contents.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional, Union

from .. import json
from ..errors import DecodeError, SignatureError
from .message import Envelope, by_kind, Call, Cast, Reply


_SIGNED_FIELDS = {'data', 'signature'}


def sign(data: bytes, key: bytes) -> str:
    return hmac.new(key, data, hashlib.sha256).hexdigest()


def encode(envelope: Envelope, key: Optional[bytes] = None) -> bytes:
    """Encode an envelope, signing it if *key* is provided."""

    try:
        encoded = json.dumps(envelope.to_dict())
    except (TypeError, ValueError) as e:
        raise TypeError(f"{envelope.kind} payload is not JSON serializable: {e}") from e

    if key is None:
        return encoded

    wrapped = {'data': encoded.decode('utf-8'), 'signature': sign(encoded, key)}
    return json.dumps(wrapped)


def decode(kind: str, data: Union[bytes, str], key: Optional[bytes] = None) -> Envelope:
    """Decode *data* as an envelope of the given *kind*.

    Raises DecodeError for anything that is not a well-formed envelope of
    that kind, and SignatureError when *key* is set and the signature is
    missing or wrong.
    """

    try:
        cls = by_kind[kind]
    except KeyError:
        raise ValueError(f"unknown envelope kind: {kind!r}")

    if isinstance(data, str):
        data = data.encode('utf-8')

    values = _loads(data)

    if isinstance(values, dict) and set(values) == _SIGNED_FIELDS:
        data = _unwrap(values, key)
        values = _loads(data)
    elif key is not None:
        raise SignatureError(f"unsigned {kind} envelope")

    if not isinstance(values, dict):
        raise DecodeError(f"{kind} envelope must be a JSON object")

    try:
        return cls.from_dict(values)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"malformed {kind} envelope: {e}") from e


def decode_call(data, key=None) -> Call:
    return decode(Call.kind, data, key)


def decode_cast(data, key=None) -> Cast:
    return decode(Cast.kind, data, key)


def decode_reply(data, key=None) -> Reply:
    return decode(Reply.kind, data, key)


def _loads(data: bytes):
    try:
        return json.loads(data)
    except json.errors as e:
        raise DecodeError(f"invalid JSON: {e}") from e


def _unwrap(values: dict, key: Optional[bytes]) -> bytes:
    inner = values['data']
    signature = values['signature']

    if not isinstance(inner, str) or not isinstance(signature, str):
        raise DecodeError("malformed signed envelope")

    inner = inner.encode('utf-8')

    if key is not None and not hmac.compare_digest(sign(inner, key), signature):
        raise SignatureError("envelope signature does not match")

    return inner
