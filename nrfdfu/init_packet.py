"""Serialization of DFU init packets, the firmware metadata sent before the image."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from enum import IntEnum

log = logging.getLogger(__name__)

_WIRE_VARINT = 0
_WIRE_LENGTH_DELIMITED = 2

DEFAULT_HW_VERSION = 52


class FwType(IntEnum):
    APPLICATION = 0
    SOFTDEVICE = 1
    BOOTLOADER = 2
    SOFTDEVICE_AND_BOOTLOADER = 3


class HashType(IntEnum):
    NO_HASH = 0
    CRC = 1
    SHA128 = 2
    SHA256 = 3  # the only hash type the stock bootloader accepts
    SHA512 = 4


@dataclass(frozen=True)
class Hash:
    hash_type: HashType
    hash: bytes


@dataclass(frozen=True)
class InitCommand:
    """The supported subset of the bootloader's init command."""

    fw_version: int
    hw_version: int
    fw_type: FwType
    sd_size: int
    bl_size: int
    app_size: int
    hash: Hash
    is_debug: bool | None = None


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer as an unsigned LEB128 varint."""
    if value < 0:
        raise ValueError(f"varint must be non-negative, got {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _varint_field(field_number: int, value: int) -> bytes:
    return encode_varint(field_number << 3 | _WIRE_VARINT) + encode_varint(int(value))


def _bytes_field(field_number: int, value: bytes) -> bytes:
    return (
        encode_varint(field_number << 3 | _WIRE_LENGTH_DELIMITED)
        + encode_varint(len(value))
        + bytes(value)
    )


def _encode_hash(value: Hash) -> bytes:
    return _varint_field(1, value.hash_type) + _bytes_field(2, value.hash)


def _encode_command_body(command: InitCommand) -> bytes:
    parts = [
        _varint_field(1, command.fw_version),
        _varint_field(2, command.hw_version),
        _varint_field(4, command.fw_type),
        _varint_field(5, command.sd_size),
        _varint_field(6, command.bl_size),
        _varint_field(7, command.app_size),
        _bytes_field(8, _encode_hash(command.hash)),
    ]
    if command.is_debug is not None:
        parts.append(_varint_field(9, command.is_debug))
    return b"".join(parts)


def encode_init_command(command: InitCommand) -> bytes:
    """Encode ``command`` as the complete packet sent to the bootloader."""
    inner = _varint_field(1, 1) + _bytes_field(2, _encode_command_body(command))
    return _bytes_field(1, inner)


def build_init_packet(image: bytes) -> bytes:
    """Build the init packet describing the application ``image``."""
    # The bootloader expects the digest in little-endian byte order.
    digest = hashlib.sha256(image).digest()[::-1]
    log.debug("image size: %d Bytes (%d KiB)", len(image), len(image) // 1024)
    log.debug("image hash: %s", digest.hex())

    command = InitCommand(
        fw_version=0,
        hw_version=DEFAULT_HW_VERSION,
        fw_type=FwType.APPLICATION,
        sd_size=0,
        bl_size=0,
        app_size=len(image),
        hash=Hash(HashType.SHA256, digest),
        is_debug=False,
    )
    return encode_init_command(command)