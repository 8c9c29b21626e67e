# nrfdfu

A flashing tool for the nRF serial DFU bootloader, such as the one on the nRF52840
Dongle.

The tool reads a 32-bit ELF firmware file and builds a flat binary image from it in
memory, much as `objcopy -O binary` does. Gaps between segments are filled with zeros,
and the image is padded with `0xFF` to a multiple of four bytes. The tool then builds an
init packet that holds the image size and its SHA-256 hash. It uploads the init packet
and the image over the bootloader's USB serial port, using SLIP framing and checking a
CRC-32 after each object.

## Installation

```
pip install .
```

## Usage

Put the device into bootloader mode by pressing its reset button, then run:

```
nrfdfu path/to/firmware.elf
```

The tool looks for exactly one USB serial device with vendor ID `0x1915` and product ID
`0x521f`. It opens that device at 115200 baud with a one-second timeout. It stops with an
error if it finds no such device, or if it finds more than one.

The firmware must start at address `0x1000` or above, so that it does not collide with
the bootloader. Segments that overlap are rejected.

When an error occurs, the tool prints `error: <message>` to standard error and exits
with status 1.

Progress is logged at the `INFO` level. To change this, set the `NRFDFU_LOG` environment
variable to a logging level name, for example `NRFDFU_LOG=debug`. If the name is not a
valid level, `INFO` is used.

## Library use

The modules can also be used on their own:

- `nrfdfu.elf.read_elf_image(data)` returns the flat image and raises `ElfError` when it
  cannot build one.
- `nrfdfu.init_packet.build_init_packet(image)` returns the encoded init packet. The
  module also provides `InitCommand`, `Hash`, `FwType`, `HashType`,
  `encode_init_command` and `encode_varint`.
- `nrfdfu.slip.encode_frame(data)` and `nrfdfu.slip.decode_frame(reader)` handle SLIP
  framing. `decode_frame` raises `EOFError` on a truncated frame and `ValueError` on an
  invalid escape sequence.
- `nrfdfu.messages` defines the request and response types and
  `parse_response(request, buf)`. `parse_response` raises `ProtocolError` for a
  malformed response and `DfuError` for an error code that the bootloader reports.
- `nrfdfu.flasher` provides `BootloaderConnection`, `pad_image`, `find_port`, `run`,
  `main` and `FlashError`.

```python
from nrfdfu.elf import read_elf_image
from nrfdfu.flasher import pad_image
from nrfdfu.init_packet import build_init_packet
from nrfdfu.slip import encode_frame

with open("firmware.elf", "rb") as fh:
    image = pad_image(read_elf_image(fh.read()))

init_packet = build_init_packet(image)
frame = encode_frame(b"\x00")
```

`BootloaderConnection(serial)` accepts any object that has `write`, `flush` and `read`,
such as an open `serial.Serial`. When it is created, it checks that the bootloader
speaks protocol version 1 and then reads the MTU. `send_init_packet(data)` and
`send_firmware(image)` carry out the upload.

## Limitations

- The tool uploads only application images. The init packet always has firmware type
  application, firmware version 0, hardware version 52 and no debug flag.
- Init packets are not signed, so bootloaders that require signed packets reject them.
- SoftDevice and bootloader images, DFU `.zip` packages, and transports other than USB
  serial are not supported.

## Development

```
pip install -e ".[test]"
pytest
```