import io

import pytest

from nrfdfu.slip import END, ESC, ESC_END, ESC_ESC, decode_frame, encode_frame


def decode(data: bytes) -> bytes:
    return decode_frame(io.BytesIO(data))


def test_encode():
    assert encode_frame(bytes([0])) == bytes([0, END])
    assert encode_frame(bytes([END, 9])) == bytes([ESC, ESC_END, 9, END])
    assert encode_frame(bytes([0, END, ESC, 1])) == bytes(
        [0, ESC, ESC_END, ESC, ESC_ESC, 1, END]
    )


def test_decode():
    assert decode(bytes([0, END])) == bytes([0])
    assert decode(bytes([ESC, ESC_END, 9, END])) == bytes([END, 9])
    assert decode(bytes([0, ESC, ESC_END, ESC, ESC_ESC, 1, END])) == bytes(
        [0, END, ESC, 1]
    )


def test_encode_empty_is_just_terminator():
    assert encode_frame(b"") == bytes([END])


@pytest.mark.parametrize(
    "payload",
    [b"", b"hello", bytes(range(256)), bytes([ESC, ESC, END, END]), bytes([ESC_END, ESC_ESC])],
)
def test_round_trip(payload):
    assert decode(encode_frame(payload)) == payload


def test_encoded_frame_has_single_end_at_tail():
    encoded = encode_frame(bytes(range(256)) * 2)
    assert encoded.count(bytes([END])) == 1
    assert encoded[-1] == END


def test_decode_reads_only_one_frame():
    stream = io.BytesIO(encode_frame(b"first") + encode_frame(b"second"))
    assert decode_frame(stream) == b"first"
    assert decode_frame(stream) == b"second"


def test_decode_eof_without_terminator():
    with pytest.raises(EOFError):
        decode(bytes([1, 2, 3]))


def test_decode_eof_after_escape():
    with pytest.raises(EOFError):
        decode(bytes([1, ESC]))


def test_decode_invalid_escape():
    with pytest.raises(ValueError, match="invalid byte following ESC: 0x05"):
        decode(bytes([ESC, 0x05, END]))