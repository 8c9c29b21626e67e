"""SLIP framing as used by the nRF serial DFU transport."""

from __future__ import annotations

from typing import BinaryIO

END = 0xC0
ESC = 0xDB
ESC_END = 0xDC
ESC_ESC = 0xDD


def encode_frame(data: bytes) -> bytes:
    """Escape ``data`` and terminate it with an END byte."""
    escaped = (
        bytes(data)
        .replace(bytes((ESC,)), bytes((ESC, ESC_ESC)))
        .replace(bytes((END,)), bytes((ESC, ESC_END)))
    )
    return escaped + bytes((END,))


def _read_byte(reader: BinaryIO) -> int:
    chunk = reader.read(1)
    if not chunk:
        raise EOFError("unexpected end of stream while reading SLIP frame")
    return chunk[0]


def decode_frame(reader: BinaryIO) -> bytes:
    """Read one SLIP frame from ``reader`` and return its decoded contents.

    Raises EOFError if the stream ends before the frame terminator and
    ValueError if an escape sequence is invalid.
    """
    out = bytearray()
    while True:
        byte = _read_byte(reader)
        if byte == END:
            return bytes(out)
        if byte == ESC:
            escaped = _read_byte(reader)
            if escaped == ESC_ESC:
                byte = ESC
            elif escaped == ESC_END:
                byte = END
            else:
                raise ValueError(f"invalid byte following ESC: 0x{escaped:02x}")
        out.append(byte)