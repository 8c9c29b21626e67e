import struct

import pytest

from nrfdfu.messages import (
    CrcRequest,
    CrcResponse,
    CreateObjectRequest,
    CreateObjectResponse,
    DfuError,
    ExecuteRequest,
    ExecuteResponse,
    ExtError,
    GetMtuRequest,
    GetMtuResponse,
    HardwareVersionRequest,
    HardwareVersionResponse,
    ObjectType,
    OpCode,
    PingRequest,
    PingResponse,
    ProtocolError,
    ProtocolVersionRequest,
    ProtocolVersionResponse,
    ResultCode,
    SelectRequest,
    SelectResponse,
    SetPrnRequest,
    SetPrnResponse,
    WriteRequest,
    parse_response,
)


def frame(request, payload=b"", result=ResultCode.SUCCESS):
    return bytes([OpCode.RESPONSE, request.OPCODE, result]) + payload


def test_encode_prefixes_opcode():
    requests = [
        ProtocolVersionRequest(),
        HardwareVersionRequest(),
        PingRequest(3),
        SelectRequest(ObjectType.DATA),
        CreateObjectRequest(ObjectType.COMMAND, 100),
        SetPrnRequest(0),
        GetMtuRequest(),
        WriteRequest(b"xyz"),
        CrcRequest(),
        ExecuteRequest(),
    ]
    for request_ in requests:
        encoded = request_.encode()
        assert encoded[0] == request_.OPCODE
        assert encoded[1:] == request_.payload()


def test_encode_known_opcodes():
    assert ProtocolVersionRequest().encode() == b"\x00"
    assert PingRequest(3).encode() == b"\x09\x03"
    assert WriteRequest(b"xyz").encode() == b"\x08xyz"
    assert SelectRequest(ObjectType.DATA).encode() == b"\x06\x02"


def test_empty_requests_have_no_payload():
    for request_ in (ProtocolVersionRequest(), GetMtuRequest(), CrcRequest(), ExecuteRequest()):
        assert request_.encode() == bytes([request_.OPCODE])


def test_select_request_payload():
    assert SelectRequest(ObjectType.DATA).payload() == bytes([ObjectType.DATA])


def test_create_object_payload_is_byte_type_and_le_size():
    assert CreateObjectRequest(ObjectType.COMMAND, 0x12345678).payload() == b"\x01\x78\x56\x34\x12"


def test_set_prn_payload_round_trip():
    assert struct.unpack("<H", SetPrnRequest(513).payload()) == (513,)


def test_write_and_ping_payload():
    assert WriteRequest(b"abc").payload() == b"abc"
    assert PingRequest(7).payload() == bytes([7])


def test_parse_protocol_version():
    req = ProtocolVersionRequest()
    assert parse_response(req, frame(req, bytes([1]))) == ProtocolVersionResponse(1)


def test_parse_hardware_version():
    req = HardwareVersionRequest()
    payload = struct.pack("<IIIII", 52840, 2, 1024, 256, 4096)
    assert parse_response(req, frame(req, payload)) == HardwareVersionResponse(
        part=52840, variant=2, rom_size=1024, ram_size=256, rom_page_size=4096
    )


def test_parse_select():
    req = SelectRequest(ObjectType.COMMAND)
    payload = struct.pack("<III", 4096, 10, 99)
    assert parse_response(req, frame(req, payload)) == SelectResponse(
        max_size=4096, offset=10, crc=99
    )


def test_parse_crc_and_mtu_and_ping():
    crc = CrcRequest()
    assert parse_response(crc, frame(crc, struct.pack("<II", 5, 7))) == CrcResponse(5, 7)
    mtu = GetMtuRequest()
    assert parse_response(mtu, frame(mtu, struct.pack("<H", 131))) == GetMtuResponse(131)
    ping = PingRequest(9)
    assert parse_response(ping, frame(ping, bytes([9]))) == PingResponse(9)


def test_parse_empty_responses():
    for req, expected in (
        (ExecuteRequest(), ExecuteResponse()),
        (SetPrnRequest(0), SetPrnResponse()),
        (CreateObjectRequest(ObjectType.DATA, 4), CreateObjectResponse()),
    ):
        assert parse_response(req, frame(req)) == expected


def test_parse_truncated_frame():
    with pytest.raises(ProtocolError, match="expected at least 3 bytes, got 2"):
        parse_response(CrcRequest(), bytes([OpCode.RESPONSE, OpCode.CRC]))


def test_parse_bad_preamble():
    with pytest.raises(ProtocolError, match="preamble 0x60, got 0x61"):
        parse_response(CrcRequest(), bytes([0x61, OpCode.CRC, ResultCode.SUCCESS]))


def test_parse_wrong_opcode():
    req = CrcRequest()
    with pytest.raises(ProtocolError, match="expected echoed opcode CRC"):
        parse_response(req, frame(ExecuteRequest()))


def test_parse_invalid_result_code():
    req = ExecuteRequest()
    with pytest.raises(ProtocolError, match="invalid result code 0x06"):
        parse_response(req, bytes([OpCode.RESPONSE, OpCode.EXECUTE, 0x06]))


def test_parse_result_code_error():
    req = ExecuteRequest()
    with pytest.raises(DfuError) as excinfo:
        parse_response(req, frame(req, result=ResultCode.OPERATION_NOT_PERMITTED))
    assert excinfo.value.code is ResultCode.OPERATION_NOT_PERMITTED
    assert excinfo.value.ext_error is None
    assert str(excinfo.value) == "operation not permitted in the current state"


def test_parse_ext_error():
    req = ExecuteRequest()
    buf = frame(req, bytes([ExtError.VERIFICATION_FAILED]), result=ResultCode.EXT_ERROR)
    with pytest.raises(DfuError) as excinfo:
        parse_response(req, buf)
    assert excinfo.value.ext_error is ExtError.VERIFICATION_FAILED
    assert str(excinfo.value) == "hash verification failed"


def test_parse_ext_error_missing_byte():
    req = ExecuteRequest()
    with pytest.raises(ProtocolError, match="missing extended error byte"):
        parse_response(req, frame(req, result=ResultCode.EXT_ERROR))


def test_parse_unknown_ext_error():
    req = ExecuteRequest()
    with pytest.raises(ProtocolError, match="unknown extended error code 0xff"):
        parse_response(req, frame(req, bytes([0xFF]), result=ResultCode.EXT_ERROR))


def test_parse_trailing_bytes():
    req = ExecuteRequest()
    with pytest.raises(ProtocolError, match="trailing bytes in response"):
        parse_response(req, frame(req, b"\x00"))


def test_parse_truncated_payload():
    req = CrcRequest()
    with pytest.raises(ProtocolError, match="truncated response payload"):
        parse_response(req, frame(req, b"\x00\x00\x00"))


def test_parse_write_response_unsupported():
    req = WriteRequest(b"a")
    with pytest.raises(TypeError):
        parse_response(req, frame(req))


def test_dfu_error_ext_without_byte_rejected():
    with pytest.raises(ValueError, match="without extended error byte"):
        DfuError(ResultCode.EXT_ERROR)


def test_result_code_from_primitive():
    assert ResultCode(0x0B) is ResultCode.EXT_ERROR
    with pytest.raises(ValueError):
        ResultCode(0x06)