"""Flashing firmware through the nRF serial DFU bootloader."""

from __future__ import annotations

import logging
import os
import sys
import zlib
from pathlib import Path
from typing import Protocol, Sequence

import serial
from serial.tools import list_ports

from . import slip
from .elf import read_elf_image
from .init_packet import build_init_packet
from .messages import (
    CrcRequest,
    CrcResponse,
    CreateObjectRequest,
    ExecuteRequest,
    ExecuteResponse,
    GetMtuRequest,
    HardwareVersionRequest,
    HardwareVersionResponse,
    ObjectType,
    ProtocolVersionRequest,
    Request,
    Response,
    SelectRequest,
    SelectResponse,
    SetPrnRequest,
    WriteRequest,
    parse_response,
    ProtocolError,
    DfuError,
)

log = logging.getLogger(__name__)

USB_VID = 0x1915
USB_PID = 0x521F
BAUD_RATE = 115200
TIMEOUT_SECONDS = 1.0

PROTOCOL_VERSION = 1
"""Bootloader protocol version this tool speaks."""


class FlashError(Exception):
    """Flashing could not be carried out."""


class SerialLike(Protocol):
    def write(self, data: bytes) -> int | None: ...

    def flush(self) -> None: ...

    def read(self, size: int = 1) -> bytes: ...


class BootloaderConnection:
    """A DFU session with a bootloader reachable over ``serial``."""

    def __init__(self, serial: SerialLike) -> None:
        self.serial = serial
        self.mtu = 0

        # The protocol version must be checked before anything else, since
        # every other command may differ between versions.
        version = self.fetch_protocol_version()
        if version != PROTOCOL_VERSION:
            raise FlashError(
                f"device reports protocol version {version}, "
                f"we only support {PROTOCOL_VERSION}"
            )

        self.mtu = self.fetch_mtu()
        log.debug("MTU = %d Bytes", self.mtu)

    def request(self, req: Request) -> None:
        """Send ``req`` without waiting for a response."""
        raw = req.encode()
        log.debug("--> %s", raw.hex())
        try:
            self.serial.write(slip.encode_frame(raw))
            self.serial.flush()
        except OSError as exc:
            raise FlashError(f"error while writing to serial port: {exc}") from exc

    def request_response(self, req: Request) -> Response:
        """Send ``req`` and return the parsed response."""
        self.request(req)
        try:
            frame = slip.decode_frame(self.serial)
        except (EOFError, ValueError, OSError) as exc:
            raise FlashError(f"error while reading from serial port: {exc}") from exc
        log.debug("<-- %s", frame.hex())
        return parse_response(req, frame)

    def fetch_protocol_version(self) -> int:
        return self.request_response(ProtocolVersionRequest()).version

    def fetch_hardware_version(self) -> HardwareVersionResponse:
        return self.request_response(HardwareVersionRequest())

    def send_init_packet(self, data: bytes) -> None:
        """Transfer the init packet as a command object and execute it."""
        log.info("Sending init packet...")
        selected = self.select_object_command()
        log.debug("Object selected: %s", selected)

        log.debug("Creating Command...")
        self.create_command_object(len(data))
        log.debug("Command created")

        log.debug("Streaming Data: len: %d", len(data))
        self.stream_object_data(data)

        received = self.get_crc().crc
        self.check_crc(data, received, 0)
        self.execute()

    def send_firmware(self, image: bytes) -> None:
        """Transfer ``image`` as data objects, verifying the running CRC."""
        log.info("Sending firmware image of size %d...", len(image))

        log.debug("Selecting Object: type Data")
        selected = self.select_object_data()
        log.debug("Object selected: %s", selected)

        max_size = selected.max_size
        if max_size <= 0:
            raise FlashError(f"device reports invalid maximum object size {max_size}")

        prev_crc = 0
        for start in range(0, len(image), max_size):
            chunk = image[start:start + max_size]
            self.create_data_object(len(chunk))
            log.debug("Streaming Data: len: %d", len(chunk))
            self.stream_object_data(chunk)

            received = self.get_crc()
            log.debug("crc response: %s", received)
            prev_crc = self.check_crc(chunk, received.crc, prev_crc)

            self.execute()

        log.info("Done.")

    def check_crc(self, data: bytes, received_crc: int, initial: int) -> int:
        """Continue the CRC-32 ``initial`` over ``data`` and compare it with ``received_crc``."""
        expected = zlib.crc32(data, initial)
        if expected != received_crc:
            message = f"crc failed: expected {expected} - received {received_crc}"
            log.debug("%s", message)
            raise FlashError(message)
        log.debug("crc passed.")
        return expected

    def select_object_command(self) -> SelectResponse:
        return self.request_response(SelectRequest(ObjectType.COMMAND))

    def select_object_data(self) -> SelectResponse:
        return self.request_response(SelectRequest(ObjectType.DATA))

    def create_command_object(self, size: int) -> None:
        self.request_response(CreateObjectRequest(ObjectType.COMMAND, size))

    def create_data_object(self, size: int) -> None:
        # Fails with OPERATION_NOT_PERMITTED unless an init packet was sent.
        self.request_response(CreateObjectRequest(ObjectType.DATA, size))

    def set_receipt_notification(self, every_n_packets: int) -> None:
        self.request_response(SetPrnRequest(every_n_packets))

    def fetch_mtu(self) -> int:
        return self.request_response(GetMtuRequest()).mtu

    def stream_object_data(self, data: bytes) -> None:
        """Send ``data`` in write requests that fit the MTU even when fully escaped."""
        # The opcode byte is added and SLIP encoding may double every byte
        # and append a terminator.
        max_chunk = (self.mtu - 1) // 2 - 1
        if max_chunk <= 0:
            raise FlashError(f"MTU of {self.mtu} Bytes is too small to transfer data")
        for start in range(0, len(data), max_chunk):
            self.request(WriteRequest(data[start:start + max_chunk]))

    def get_crc(self) -> CrcResponse:
        return self.request_response(CrcRequest())

    def execute(self) -> ExecuteResponse:
        """Tell the device to execute the object sent so far."""
        return self.request_response(ExecuteRequest())


def pad_image(image: bytes) -> bytes:
    """Pad ``image`` with 0xFF bytes to a multiple of four bytes."""
    remainder = len(image) % 4
    if remainder == 0:
        return bytes(image)
    return bytes(image) + b"\xff" * (4 - remainder)


def find_port() -> str:
    """Return the device name of the single attached nRF bootloader."""
    matching = [
        port for port in list_ports.comports()
        if port.vid == USB_VID and port.pid == USB_PID
    ]
    if not matching:
        raise FlashError(
            "no matching USB serial device found.\n"
            "       Remember to put the device in bootloader mode by pressing "
            "the reset button!"
        )
    if len(matching) > 1:
        raise FlashError("multiple matching USB serial devices found")
    log.debug("opening %s", matching[0].device)
    return matching[0].device


def run(argv: Sequence[str]) -> None:
    """Flash the ELF file named by the first argument."""
    args = list(argv)
    if not args:
        raise FlashError("missing argument (expected path to ELF file)")
    path = args[0]
    try:
        elf = Path(path).read_bytes()
    except OSError as exc:
        raise FlashError(f"couldn't read `{path}`: {exc}") from exc
    image = read_elf_image(elf)

    port_name = find_port()
    with serial.Serial(port_name, BAUD_RATE, timeout=TIMEOUT_SECONDS) as port:
        # Required on some platforms, otherwise communication times out.
        port.dtr = True

        conn = BootloaderConnection(port)
        # USB is a reliable transport; receipt notifications are not needed.
        conn.set_receipt_notification(0)

        try:
            log.debug("select object response: %s", conn.select_object_command())
        except (FlashError, ProtocolError, DfuError) as exc:
            log.debug("select object response: %s", exc)

        log.debug("protocol version: %d", conn.fetch_protocol_version())
        log.debug("hardware version: %s", conn.fetch_hardware_version())

        image = pad_image(image)
        conn.send_init_packet(build_init_packet(image))
        conn.send_firmware(image)


def _configure_logging() -> None:
    level = os.environ.get("NRFDFU_LOG", "INFO").upper()
    try:
        logging.basicConfig(level=level, format="%(levelname)s %(message)s")
    except ValueError:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


def main(argv: Sequence[str] | None = None) -> int:
    """Command-line entry point; returns the process exit status."""
    _configure_logging()
    if argv is None:
        argv = sys.argv[1:]
    try:
        run(argv)
    except Exception as exc:  # reported to the user, not re-raised
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())