"""Requests and responses of the nRF DFU bootloader protocol."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar


class OpCode(IntEnum):
    """Request opcodes (only those in use)."""

    PROTOCOL_VERSION = 0x00
    CREATE_OBJECT = 0x01
    RECEIPT_NOTIF_SET = 0x02
    CRC = 0x03
    EXECUTE = 0x04
    SELECT = 0x06
    MTU_GET = 0x07
    WRITE = 0x08
    PING = 0x09
    HARDWARE_VERSION_GET = 0x0A
    RESPONSE = 0x60


class ResultCode(IntEnum):
    """Result codes reported by the bootloader."""

    INVALID = 0x00
    SUCCESS = 0x01
    OP_CODE_NOT_SUPPORTED = 0x02
    INVALID_PARAMETER = 0x03
    INSUFFICIENT_RESOURCES = 0x04
    INVALID_OBJECT = 0x05
    UNSUPPORTED_TYPE = 0x07
    OPERATION_NOT_PERMITTED = 0x08
    OPERATION_FAILED = 0x0A
    EXT_ERROR = 0x0B


class ExtError(IntEnum):
    """Extended error codes that follow an EXT_ERROR result code."""

    NO_ERROR = 0x00
    INVALID_ERROR_CODE = 0x01
    WRONG_COMMAND_FORMAT = 0x02
    UNKNOWN_COMMAND = 0x03
    INIT_COMMAND_INVALID = 0x04
    FW_VERSION_FAILURE = 0x05
    HW_VERSION_FAILURE = 0x06
    SD_VERSION_FAILURE = 0x07
    SIGNATURE_MISSING = 0x08
    WRONG_HASH_TYPE = 0x09
    HASH_FAILED = 0x0A
    WRONG_SIGNATURE_TYPE = 0x0B
    VERIFICATION_FAILED = 0x0C
    INSUFFICIENT_SPACE = 0x0D


class ObjectType(IntEnum):
    COMMAND = 0x01
    DATA = 0x02


_EXT_MESSAGES = {
    ExtError.NO_ERROR: "no extended error set",
    ExtError.INVALID_ERROR_CODE: "invalid extended error code",
    ExtError.WRONG_COMMAND_FORMAT: "incorrect command format",
    ExtError.UNKNOWN_COMMAND: "unknown command",
    ExtError.INIT_COMMAND_INVALID: "initialization command invalid",
    ExtError.FW_VERSION_FAILURE: "invalid firmware version (possible downgrade attempted)",
    ExtError.HW_VERSION_FAILURE: "hardware version mismatch",
    ExtError.SD_VERSION_FAILURE: "firmware requires unavailable SoftDevice version",
    ExtError.SIGNATURE_MISSING: "missing image signature",
    ExtError.WRONG_HASH_TYPE: "unsupported hash type used in initialization command",
    ExtError.HASH_FAILED: "failed to compute firmware hash",
    ExtError.WRONG_SIGNATURE_TYPE: "unsupported signature type",
    ExtError.VERIFICATION_FAILED: "hash verification failed",
    ExtError.INSUFFICIENT_SPACE: "insufficient space for firmware",
}

_RESULT_MESSAGES = {
    ResultCode.INVALID: "invalid request opcode",
    ResultCode.SUCCESS: "success",
    ResultCode.OP_CODE_NOT_SUPPORTED: "opcode not supported",
    ResultCode.INVALID_PARAMETER: "missing or invalid request parameter",
    ResultCode.INSUFFICIENT_RESOURCES: "not enough memory to create object",
    ResultCode.INVALID_OBJECT: "invalid data object",
    ResultCode.UNSUPPORTED_TYPE: "invalid object type for create object request",
    ResultCode.OPERATION_NOT_PERMITTED: "operation not permitted in the current state",
    ResultCode.OPERATION_FAILED: "operation failed",
}


class ProtocolError(Exception):
    """A response from the bootloader could not be understood."""


class DfuError(Exception):
    """An error code returned by the bootloader."""

    def __init__(self, code: ResultCode, ext_error: ExtError | None = None) -> None:
        if ext_error is not None:
            message = _EXT_MESSAGES[ext_error]
        elif code is ResultCode.EXT_ERROR:
            raise ValueError("`EXT_ERROR` result code without extended error byte")
        else:
            message = _RESULT_MESSAGES[code]
        super().__init__(message)
        self.code = code
        self.ext_error = ext_error


class Response:
    """Base class of bootloader responses; payload layout given by ``_FORMAT``."""

    _FORMAT: ClassVar[str] = "<"

    @classmethod
    def from_payload(cls, data: bytes):
        """Decode a response payload, which must have exactly the expected length."""
        size = struct.calcsize(cls._FORMAT)
        if len(data) < size:
            raise ProtocolError(
                f"truncated response payload (expected {size} bytes, got {len(data)})"
            )
        if len(data) > size:
            raise ProtocolError("trailing bytes in response")
        return cls(*struct.unpack(cls._FORMAT, data))


class Request:
    """Base class of bootloader requests."""

    OPCODE: ClassVar[OpCode]
    RESPONSE: ClassVar[type[Response] | None]

    def payload(self) -> bytes:
        return b""

    def encode(self) -> bytes:
        """The request as sent on the wire, before framing."""
        return bytes((self.OPCODE,)) + self.payload()


@dataclass(frozen=True)
class ProtocolVersionResponse(Response):
    version: int
    _FORMAT = "<B"


@dataclass(frozen=True)
class ProtocolVersionRequest(Request):
    OPCODE = OpCode.PROTOCOL_VERSION
    RESPONSE = ProtocolVersionResponse


@dataclass(frozen=True)
class HardwareVersionResponse(Response):
    part: int
    variant: int
    rom_size: int
    ram_size: int
    rom_page_size: int
    _FORMAT = "<IIIII"


@dataclass(frozen=True)
class HardwareVersionRequest(Request):
    OPCODE = OpCode.HARDWARE_VERSION_GET
    RESPONSE = HardwareVersionResponse


@dataclass(frozen=True)
class PingResponse(Response):
    value: int
    _FORMAT = "<B"


@dataclass(frozen=True)
class PingRequest(Request):
    value: int
    OPCODE = OpCode.PING
    RESPONSE = PingResponse

    def payload(self) -> bytes:
        return struct.pack("<B", self.value)


@dataclass(frozen=True)
class SelectResponse(Response):
    # Field order follows the firmware implementation, not the documentation.
    max_size: int
    offset: int
    crc: int
    _FORMAT = "<III"


@dataclass(frozen=True)
class SelectRequest(Request):
    obj_type: ObjectType
    OPCODE = OpCode.SELECT
    RESPONSE = SelectResponse

    def payload(self) -> bytes:
        return struct.pack("<B", self.obj_type)


@dataclass(frozen=True)
class CreateObjectResponse(Response):
    pass


@dataclass(frozen=True)
class CreateObjectRequest(Request):
    obj_type: ObjectType
    size: int
    OPCODE = OpCode.CREATE_OBJECT
    RESPONSE = CreateObjectResponse

    def payload(self) -> bytes:
        # The serial transport reads the object type as a single byte.
        return struct.pack("<BI", self.obj_type, self.size)


@dataclass(frozen=True)
class SetPrnResponse(Response):
    pass


@dataclass(frozen=True)
class SetPrnRequest(Request):
    every_n_packets: int
    OPCODE = OpCode.RECEIPT_NOTIF_SET
    RESPONSE = SetPrnResponse

    def payload(self) -> bytes:
        return struct.pack("<H", self.every_n_packets)


@dataclass(frozen=True)
class GetMtuResponse(Response):
    mtu: int
    _FORMAT = "<H"


@dataclass(frozen=True)
class GetMtuRequest(Request):
    OPCODE = OpCode.MTU_GET
    RESPONSE = GetMtuResponse


@dataclass(frozen=True)
class WriteRequest(Request):
    """Object data; its responses depend on receipt notification and are not parsed."""

    data: bytes
    OPCODE = OpCode.WRITE
    RESPONSE = None

    def payload(self) -> bytes:
        return bytes(self.data)


@dataclass(frozen=True)
class CrcResponse(Response):
    offset: int
    crc: int
    _FORMAT = "<II"


@dataclass(frozen=True)
class CrcRequest(Request):
    OPCODE = OpCode.CRC
    RESPONSE = CrcResponse


@dataclass(frozen=True)
class ExecuteResponse(Response):
    pass


@dataclass(frozen=True)
class ExecuteRequest(Request):
    OPCODE = OpCode.EXECUTE
    RESPONSE = ExecuteResponse


def parse_response(request: Request, buf: bytes) -> Response:
    """Validate a decoded response frame to ``request`` and return its payload.

    Raises ProtocolError for malformed frames and DfuError for error codes.
    """
    if len(buf) < 3:
        raise ProtocolError(
            f"truncated response (expected at least 3 bytes, got {len(buf)})"
        )

    if buf[0] != OpCode.RESPONSE:
        raise ProtocolError(
            "malformed response (expected nrf DFU response preamble 0x60, "
            f"got 0x{buf[0]:02x})"
        )

    opcode = request.OPCODE
    if buf[1] != opcode:
        raise ProtocolError(
            f"malformed response (expected echoed opcode {opcode.name} "
            f"(0x{opcode:02x}), got 0x{buf[1]:02x})"
        )

    try:
        result = ResultCode(buf[2])
    except ValueError:
        raise ProtocolError(
            f"malformed response (invalid result code 0x{buf[2]:02x})"
        ) from None

    if result is ResultCode.EXT_ERROR:
        if len(buf) < 4:
            raise ProtocolError("malformed response (missing extended error byte)")
        try:
            ext_error = ExtError(buf[3])
        except ValueError:
            raise ProtocolError(
                f"malformed response (unknown extended error code 0x{buf[3]:02x})"
            ) from None
        raise DfuError(ResultCode.EXT_ERROR, ext_error)
    if result is not ResultCode.SUCCESS:
        raise DfuError(result)

    response_type = request.RESPONSE
    if response_type is None:
        raise TypeError(f"{type(request).__name__} has no parseable response")
    return response_type.from_payload(bytes(buf[3:]))