import json
import carrier


def test_json_encode_and_decode():
    encode_and_decode(json.dumps, json.loads, dump_is_bytes=False)


def test_carrier_encode_and_decode():
    encode_and_decode(carrier.json.dumps, carrier.json.loads)


def test_decode_error_is_catchable():

    try:
        carrier.json.loads(b'{not json')
    except carrier.json.errors:
        pass
    else:
        raise RuntimeError('expected a decode error for malformed JSON')


def encode_and_decode(dumps, loads, dump_is_bytes=True):

    input_dictionary = dict()
    input_dictionary['list'] = [1, 2, 3, 'a', 'b', None, 'c', 'z']
    input_dictionary['dict'] = {'one': 1, 'two': 2}
    input_dictionary['none'] = None
    input_dictionary['true'] = True
    input_dictionary['false'] = False
    input_dictionary['text'] = 'café'

    encoded = dumps(input_dictionary)

    if dump_is_bytes:
        assert isinstance(encoded, bytes)
    else:
        assert isinstance(encoded, str)

    # Whitespace handling differs between the JSON libraries carrier may
    # pick, so only the decoded form is compared.

    decoded = loads(encoded)
    assert isinstance(decoded, dict)
    assert decoded == input_dictionary


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
